import pytest
from pydantic import ValidationError

from linkshortener.schemas.links import CreateLinkRequest, UpdateLinkRequest


@pytest.mark.parametrize(
    "target",
    [
        "https://example.com/path?q=1",
        "http://example.com",
        # scheme and format are not checked
        "example.com",
        "mailto:someone@example.com",
    ],
)
def test_create_link_request_accepts_any_target(target: str):
    req = CreateLinkRequest(target_url=target)
    assert req.target_url == target
    assert req.short_key is None


@pytest.mark.parametrize("bad_target", ["", "   "])
def test_target_url_required(bad_target: str):
    with pytest.raises(ValidationError):
        CreateLinkRequest(target_url=bad_target)
    with pytest.raises(ValidationError):
        UpdateLinkRequest(target_url=bad_target)


def test_target_url_is_stripped():
    assert CreateLinkRequest(target_url="  https://example.com ").target_url == "https://example.com"


@pytest.mark.parametrize("bad_key", ["bad space", "x" * 65, "nope!", "a/b", "üml"])
def test_short_key_validation_rejects_bad_key(bad_key: str):
    with pytest.raises(ValidationError):
        CreateLinkRequest(target_url="https://example.com", short_key=bad_key)


@pytest.mark.parametrize("good_key", ["promo", "Promo_2024", "a-b", "x"])
def test_short_key_validation_accepts_valid_key(good_key: str):
    req = CreateLinkRequest(target_url="https://example.com", short_key=good_key)
    assert req.short_key == good_key


def test_reserved_key_passes_schema():
    # rejected later by the store with ReservedKeyError
    req = CreateLinkRequest(target_url="https://example.com", short_key="admin")
    assert req.short_key == "admin"


def test_target_url_max_length():
    from linkshortener.schemas.links import TARGET_URL_MAX

    ok = "https://example.com/" + "a" * (TARGET_URL_MAX - 20)
    assert len(CreateLinkRequest(target_url=ok).target_url) == TARGET_URL_MAX
    with pytest.raises(ValidationError):
        CreateLinkRequest(target_url=ok + "a")
    with pytest.raises(ValidationError):
        UpdateLinkRequest(target_url=ok + "a")
