"""core/ -- Shared configuration, logging, domain models, results and error
messages for the HRBAC engine.

Layer rule: core/ imports only stdlib + third-party libraries.
It does NOT import from storage/ or hrbac/.
"""
