import json
from pathlib import Path

from rudark.main import app


def test_openapi_paths_snapshot():
    snapshot_path = Path(__file__).parent / "snapshots" / "openapi_paths_snapshot.json"
    expected_paths = json.loads(snapshot_path.read_text(encoding="utf-8"))
    actual_paths = sorted(app.openapi()["paths"].keys())
    assert actual_paths == expected_paths


def test_error_responses_use_shared_envelope():
    schema = app.openapi()
    checkout = schema["paths"]["/checkout"]["post"]["responses"]
    assert {"400", "422", "502"} <= set(checkout)
    envelope = checkout["400"]["content"]["application/json"]["schema"]
    assert envelope["$ref"].endswith("/ErrorOut")


def test_error_envelope_example_points_at_checkout():
    example = app.openapi()["components"]["schemas"]["ErrorOut"]["example"]["error"]
    assert example["path"] == "/checkout"
    assert example["code"] == "bad_request"
