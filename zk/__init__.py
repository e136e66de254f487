"""
Veridity zk
===========

Proof generation and verification for the identity claims:

- `zk.claims`    claim-type -> circuit tables and public-signal layouts
- `zk.witness`   maps caller inputs onto circuit input names
- `zk.prover`    snarkjs Groth16 proving (with a gated development mock)
- `zk.verifier`  claim-level verification returning `ProofOutcome`
- `zk.pool`      bounded worker pool with per-task deadlines
"""
