import main


# Purpose: verify the composition root wires every public route.
def test_routes_registered():
    paths = {
        (method.upper(), path)
        for path, operations in main.app.openapi()["paths"].items()
        for method in operations
    }

    for expected in [
        ("POST", "/api/auth/google/login"),
        ("GET", "/api/auth/google/callback"),
        ("POST", "/api/auth/logout"),
        ("GET", "/api/auth/me"),
        ("GET", "/api/events"),
        ("GET", "/api/events/dashboard"),
        ("POST", "/api/events/cleanup"),
        ("PUT", "/api/events/{event_id}"),
        ("POST", "/api/extract"),
        ("POST", "/api/extract-url"),
        ("POST", "/api/chat/{conversation_id}/messages"),
        ("POST", "/api/chat/{conversation_id}/confirm"),
        ("POST", "/api/calendar"),
        ("POST", "/api/bin/restore"),
        ("DELETE", "/api/bin/{event_id}"),
        ("POST", "/api/upload"),
        ("POST", "/api/reminder"),
    ]:
        assert expected in paths


# Purpose: verify the AI client never retries on its own and has a bounded timeout.
def test_ai_client_settings():
    assert main.ai_client.max_retries == 0
    assert main.ai_client.timeout == main.settings.PROVIDER_TIMEOUT_SECONDS
