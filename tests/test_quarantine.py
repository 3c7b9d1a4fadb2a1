import json

from presence.quality.quarantine import Quarantine


def test_reject_writes_payload(tmp_path):
    quarantine = Quarantine(tmp_path / "quarantine")
    target = quarantine.reject(
        entity_type="customer",
        key="c-1",
        patch={"email": "nope"},
        errors=[{"error": "validation_failed", "path": "email", "message": "bad"}],
    )
    payload = json.loads(target.read_text(encoding="utf-8"))
    assert payload["entity_type"] == "customer"
    assert payload["patch"] == {"email": "nope"}
    assert payload["errors"][0]["path"] == "email"


def test_summarise_counts_reasons(tmp_path):
    quarantine = Quarantine(tmp_path)
    error = {"error": "validation_failed", "path": "email"}
    quarantine.reject(entity_type="customer", key="c-1", patch={}, errors=[error])
    quarantine.reject(entity_type="customer", key="c-2", patch={}, errors=[error])
    quarantine.reject(
        entity_type="order", key="o-1", patch={}, errors=[{"error": "detach_not_supported", "path": "customer"}]
    )
    assert quarantine.summarise() == {
        "validation_failed:email": 2,
        "detach_not_supported:customer": 1,
    }
    assert quarantine.summarise(entity_type="order") == {"detach_not_supported:customer": 1}


def test_summarise_skips_old_rejects(tmp_path):
    quarantine = Quarantine(tmp_path)
    stale = tmp_path / "reject_20000101T000000000000_0badf00d.json"
    stale.write_text(json.dumps({"entity_type": "customer", "errors": [{"error": "x", "path": "y"}]}))
    assert quarantine.summarise(days=7) == {}
