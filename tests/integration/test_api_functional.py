from fastapi.testclient import TestClient


def test_api_analyze_format_tools_session() -> None:
    from opti_context.api.main import app

    client = TestClient(app)

    health = client.get("/health")
    assert health.status_code == 200
    assert health.json()["status"] == "ok"
    assert health.json()["tools"] == 6

    analyze_resp = client.post(
        "/analyze",
        json={"prompt": "How do I implement a custom handler in Configured Commerce? See FooHandler.cs"},
    )
    assert analyze_resp.status_code == 200
    body = analyze_resp.json()
    assert "configured-commerce" in body["detectedProducts"]
    assert body["promptContext"]["userIntent"] == "code-help"
    assert body["curatedContext"]["codeExamples"]
    assert "ruleAnalysis" not in body

    format_resp = client.post(
        "/format",
        json={
            "prompt": "Optimizely CMS content type with PropertyFor helpers",
            "max_context_tokens": 200,
            "drop_low_relevance_first": True,
        },
    )
    assert format_resp.status_code == 200
    payload = format_resp.json()
    assert payload["systemPrompt"]
    assert sum(block["tokensEstimate"] for block in payload["contextBlocks"]) <= 200
    assert payload["correlationId"].startswith("optidev_context_analyzer-")

    tools_resp = client.get("/tools")
    assert tools_resp.status_code == 200
    assert len(tools_resp.json()["items"]) == 6

    tool_resp = client.post(
        "/tools/optidev_development_rules",
        json={"ide_rules": ["- use single quotes", "- use double quotes"]},
    )
    assert tool_resp.status_code == 200
    assert tool_resp.json()["tags"][0] == "[tool:optidev_development_rules]"

    assert client.post("/tools/optidev_missing", json={}).status_code == 404
    assert client.post("/tools/optidev_context_analyzer", json={}).status_code == 422
    assert client.post("/analyze", json={"prompt": ""}).status_code == 422

    session_resp = client.get("/session")
    assert session_resp.status_code == 200
    assert "optidev_development_rules" in session_resp.json()["recentTools"]
