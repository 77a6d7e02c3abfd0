from crm_ingest.core.structured_logging import build_log_context, mask_email


def test_build_log_context_omits_empty_values():
    assert build_log_context() == {}
    assert build_log_context(channel="bcc_email", state="committed") == {
        "channel": "bcc_email",
        "state": "committed",
    }


def test_build_log_context_truncates_event_key():
    context = build_log_context(event_key="a" * 64)

    assert context["event_key"] == "a" * 12


def test_mask_email():
    assert mask_email("jane.doe@example.com") == "j***@example.com"
    assert mask_email("no-at-sign") == "***"
    assert mask_email(None) is None
