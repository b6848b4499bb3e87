"""
VitalSync Auth.

Account authentication and session management core: a credential
store, a signed-token service, an encrypted session store, and the
session state machine that orchestrates them.

Entry point for wiring::

    from vitalsync_auth.services import create_services
"""
