"""Process execution core for the coding tutor backend.

This package runs learners' code on the server in two ways: persistent
interactive shell sessions whose output streams to any number of
connected clients, and one-shot execution of a single program in one of
several languages under a hard timeout.

The top-level modules include:

* ``config`` – configuration handling for environment variables.
* ``models`` – Pydantic models for request, response and stream frames.
* ``errors`` – exception taxonomy mapped to HTTP statuses by the API.
* ``scratch`` – per-request scratch directories for one-shot execution.
* ``executor`` – language runners and the one-shot execution sandbox.
* ``shell`` – shell sessions, command dispatch and output fan-out.
* ``api`` – FastAPI application exposing HTTP endpoints.
"""

__version__ = "0.1.0"
