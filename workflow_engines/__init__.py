"""
Pure calculation engines.

No session, no clock reads, no I/O.  Inputs and outputs are
``workflow_kernel.domain`` value objects.
"""
