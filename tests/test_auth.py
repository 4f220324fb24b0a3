from unittest.mock import MagicMock, patch

from iep_tracker.core.auth import SCOPES, DriveAuth


def test_signed_out_without_token_file(tmp_path):
    auth = DriveAuth(None, str(tmp_path / "token.json"))
    assert auth.access_token() is None


def test_login_without_client_secret(tmp_path):
    auth = DriveAuth(str(tmp_path / "missing.json"), str(tmp_path / "token.json"))
    assert auth.login() is None


def test_valid_cached_token(tmp_path):
    token_path = tmp_path / "token.json"
    token_path.write_text("{}")
    creds = MagicMock(valid=True, token="cached-token")
    with patch("iep_tracker.core.auth.Credentials.from_authorized_user_file", return_value=creds) as load:
        assert DriveAuth(None, str(token_path)).access_token() == "cached-token"
    load.assert_called_once_with(str(token_path), SCOPES)


def test_expired_token_is_refreshed_and_stored(tmp_path):
    token_path = tmp_path / "token.json"
    token_path.write_text("{}")
    creds = MagicMock(valid=False, expired=True, refresh_token="r", token="fresh")
    creds.to_json.return_value = '{"token": "fresh"}'
    with patch("iep_tracker.core.auth.Credentials.from_authorized_user_file", return_value=creds):
        assert DriveAuth(None, str(token_path)).access_token() == "fresh"
    creds.refresh.assert_called_once()
    assert token_path.read_text() == '{"token": "fresh"}'


def test_login_runs_installed_app_flow(tmp_path):
    secret = tmp_path / "client_secret.json"
    secret.write_text("{}")
    token_path = tmp_path / "nested" / "token.json"
    flow = MagicMock()
    flow.run_local_server.return_value = MagicMock(token="new-token", to_json=MagicMock(return_value="{}"))
    with patch("iep_tracker.core.auth.InstalledAppFlow.from_client_secrets_file", return_value=flow):
        assert DriveAuth(str(secret), str(token_path)).login() == "new-token"
    assert token_path.exists()


def test_logout(tmp_path):
    token_path = tmp_path / "token.json"
    token_path.write_text("{}")
    auth = DriveAuth(None, str(token_path))
    assert auth.logout()
    assert not token_path.exists()
    assert not auth.logout()
