"""Test Fixtures Package.

- peer.py: in-memory fake peer wired to a StdioTransport
- fake_server.py: standalone JSON-RPC server script for subprocess tests

Fixtures are imported directly by test modules and conftest.py.
"""
