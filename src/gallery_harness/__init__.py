"""
GALLERY HARNESS - 1:N Identification Evaluation Harness

A command-line instrument that drives a pluggable biometric template engine
through enrollment, gallery finalization and identification search over large
input record sets, using one worker process per input shard.

The harness verifies the shape and protocol of the engine's output (template
store bookkeeping, candidate list invariants), not its biometric accuracy.
"""

__version__ = "1.0.0"
__author__ = "Gallery Harness Team"
