"""Tests for webhook handling."""

import hashlib
import hmac

from api.src.services.github import parse_webhook_payload, repo_url_candidates, verify_signature

def test_parse_push_payload():
    payload = {
        "ref": "refs/heads/main",
        "repository": {
            "name": "test-repo",
            "full_name": "user/test-repo",
            "clone_url": "https://github.com/user/test-repo.git",
        },
        "head_commit": {
            "id": "abc123def456",
            "message": "Test commit",
        },
        "pusher": {
            "name": "testuser",
        },
    }

    result = parse_webhook_payload(payload)

    assert result["repo_name"] == "test-repo"
    assert result["repo_full_name"] == "user/test-repo"
    assert result["branch"] == "main"
    assert result["tag"] is None
    assert result["commit_sha"] == "abc123def456"
    assert result["pusher"] == "testuser"

def test_parse_payload_with_after():
    """Test fallback to 'after' field for commit SHA."""
    payload = {
        "ref": "refs/heads/feature",
        "after": "xyz789",
        "repository": {
            "name": "repo",
            "full_name": "user/repo",
            "clone_url": "https://github.com/user/repo.git",
        },
        "head_commit": None,
        "pusher": {"name": "user"},
    }

    result = parse_webhook_payload(payload)
    assert result["commit_sha"] == "xyz789"
    assert result["branch"] == "feature"

def test_parse_tag_push():
    result = parse_webhook_payload({"ref": "refs/tags/v1.2.0", "after": "abc"})

    assert result["tag"] == "v1.2.0"
    assert result["branch"] is None

def test_repo_url_candidates():
    candidates = repo_url_candidates(
        {
            "clone_url": "https://github.com/user/repo.git",
            "html_url": "https://github.com/user/repo",
            "ssh_url": "",
        }
    )
    assert candidates == [
        "https://github.com/user/repo.git",
        "https://github.com/user/repo",
    ]

def test_verify_signature_without_secret():
    """When no secret is configured, verification should pass."""
    assert verify_signature(b"payload", "sha256=anything", secret="") is True

def test_verify_signature_with_secret():
    body = b'{"ref": "refs/heads/main"}'
    good = "sha256=" + hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()

    assert verify_signature(body, good, secret="s3cret") is True
    assert verify_signature(body, "sha256=bad", secret="s3cret") is False
    assert verify_signature(body, "", secret="s3cret") is False
