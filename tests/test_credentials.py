import datetime
import json
from unittest import mock

import keyring.errors
import pytest

from config import Profile
from credentials import (
    CacheError,
    CredentialCache,
    KeyringStore,
    PasswordCache,
    TemporaryCredentials,
    parse_timestamp,
)

from .conftest import OKTA_URL, MemoryStore, sts_credentials

NOW = datetime.datetime(2024, 5, 1, 12, 0, 0, tzinfo=datetime.timezone.utc)


def expiring_in(seconds):
    stamp = NOW + datetime.timedelta(seconds=seconds)
    return stamp.strftime("%Y-%m-%dT%H:%M:%SZ")


class FailingStore(MemoryStore):
    """Accepts a fixed number of writes, then refuses."""

    def __init__(self, allowed):
        super().__init__()
        self.allowed = allowed

    def set(self, service, key, value):
        if self.allowed == 0:
            raise CacheError("store refused")
        self.allowed -= 1
        super().set(service, key, value)


class TestTemporaryCredentials:

    def test_valid_with_all_fields(self):
        assert sts_credentials().is_valid

    @pytest.mark.parametrize(
        "field",
        ["access_key_id", "secret_access_key", "session_token", "expiration"],
    )
    def test_any_missing_field_is_invalid(self, field):
        creds = sts_credentials()
        setattr(creds, field, None)
        assert not creds.is_valid

    def test_expired_inside_margin(self):
        assert sts_credentials(expiring_in(899)).is_expired(NOW)

    def test_not_expired_outside_margin(self):
        assert not sts_credentials(expiring_in(901)).is_expired(NOW)

    def test_exactly_at_margin_is_not_expired(self):
        assert not sts_credentials(expiring_in(900)).is_expired(NOW)

    def test_missing_expiration_is_expired(self):
        assert TemporaryCredentials(access_key_id="a").is_expired(NOW)

    def test_unparseable_expiration_is_expired(self):
        assert sts_credentials("next tuesday").is_expired(NOW)

    def test_far_future(self):
        assert not sts_credentials("2038-01-01T10:10:10Z").is_expired()

    def test_long_past(self):
        assert sts_credentials("2004-01-01T10:10:10Z").is_expired()

    def test_offset_timestamp(self):
        stamp = parse_timestamp("2024-05-01T14:00:00+02:00")
        assert stamp == NOW

    def test_from_sts_datetime(self):
        creds = TemporaryCredentials.from_sts(
            {
                "AccessKeyId": "ASIA",
                "SecretAccessKey": "secret",
                "SessionToken": "token",
                "Expiration": NOW,
            },
        )
        assert creds.expiration == "2024-05-01T12:00:00Z"
        assert creds.is_valid

    def test_credential_process_json(self):
        document = json.loads(sts_credentials().to_json())
        assert document == {
            "Version": 1,
            "AccessKeyId": "ASIAEXAMPLE",
            "SecretAccessKey": "secret",
            "SessionToken": "token",
            "Expiration": "2038-01-01T10:10:10Z",
        }

    def test_environment_leaves_out_expiration(self):
        assert sts_credentials().environment() == {
            "AWS_ACCESS_KEY_ID": "ASIAEXAMPLE",
            "AWS_SECRET_ACCESS_KEY": "secret",
            "AWS_SESSION_TOKEN": "token",
        }

    def test_repr_hides_keys(self):
        assert "ASIAEXAMPLE" not in repr(sts_credentials())


class TestCredentialCache:

    def test_service_name(self, okta_profile):
        assert CredentialCache.service(okta_profile) == (
            f"saml_broker::aws::{okta_profile.identifier}::work"
        )

    def test_empty_cache(self, store, okta_profile):
        creds = CredentialCache(store).load(okta_profile)
        assert not creds.is_valid
        assert creds.access_key_id is None

    def test_write_then_load(self, store, okta_profile):
        cache = CredentialCache(store)
        cache.write(sts_credentials(), okta_profile)
        assert cache.load(okta_profile) == sts_credentials()
        assert len(store.secrets) == 4

    def test_partial_entry(self, store, okta_profile):
        cache = CredentialCache(store)
        cache.write(sts_credentials(), okta_profile)
        store.delete(cache.service(okta_profile), "session_token")
        creds = cache.load(okta_profile)
        assert creds.access_key_id == "ASIAEXAMPLE"
        assert not creds.is_valid

    def test_refuses_incomplete_credentials(self, store, okta_profile):
        with pytest.raises(CacheError):
            CredentialCache(store).write(TemporaryCredentials("a"), okta_profile)
        assert store.secrets == {}

    def test_failed_write_leaves_nothing(self, okta_profile):
        store = FailingStore(allowed=2)
        with pytest.raises(CacheError):
            CredentialCache(store).write(sts_credentials(), okta_profile)
        assert store.secrets == {}

    def test_profiles_do_not_share_entries(self, store, okta_profile, jumpcloud_profile):
        cache = CredentialCache(store)
        cache.write(sts_credentials(), okta_profile)
        assert not cache.load(jumpcloud_profile).is_valid

    def test_same_login_different_profiles(self, store, okta_profile):
        prod = Profile(
            "prod",
            "okta",
            okta_profile.username,
            f"{OKTA_URL}/home/amazon_aws/0oaPROD/2",
        )
        assert prod.identifier == okta_profile.identifier

        cache = CredentialCache(store)
        cache.write(sts_credentials(key="ASIADEV"), okta_profile)
        assert cache.load(prod).access_key_id is None

        cache.write(sts_credentials(key="ASIAPROD"), prod)
        cache.delete(okta_profile)
        assert cache.load(prod).access_key_id == "ASIAPROD"

    def test_delete(self, store, okta_profile):
        cache = CredentialCache(store)
        cache.write(sts_credentials(), okta_profile)
        cache.delete(okta_profile)
        assert store.secrets == {}


class TestPasswordCache:

    def test_cached_password(self, store, okta_profile):
        passwords = PasswordCache(store)
        passwords.save(okta_profile, "hunter2")
        with mock.patch("prompt.user_password") as ask:
            assert passwords.get(okta_profile) == "hunter2"
        ask.assert_not_called()

    def test_prompts_when_missing(self, store, okta_profile):
        with mock.patch("prompt.user_password", return_value="hunter2") as ask:
            assert PasswordCache(store).get(okta_profile) == "hunter2"
        ask.assert_called_once_with(
            "Password for bob@example.com at example.okta.com: ",
        )

    def test_force_prompts_anyway(self, store, okta_profile):
        passwords = PasswordCache(store)
        passwords.save(okta_profile, "old")
        with mock.patch("prompt.user_password", return_value="new"):
            assert passwords.get(okta_profile, force=True) == "new"

    def test_keyed_by_provider_and_username(self, store, okta_profile):
        PasswordCache(store).save(okta_profile, "hunter2")
        service = f"saml_broker::okta::{okta_profile.identifier}"
        assert store.get(service, "bob@example.com") == "hunter2"

    def test_refused_save_is_not_fatal(self, okta_profile):
        passwords = PasswordCache(FailingStore(allowed=0))
        passwords.save(okta_profile, "hunter2")
        assert passwords.store.secrets == {}

    def test_delete(self, store, okta_profile):
        passwords = PasswordCache(store)
        passwords.save(okta_profile, "hunter2")
        passwords.delete(okta_profile)
        assert store.secrets == {}


class TestKeyringStore:

    def test_get_survives_keyring_errors(self):
        with mock.patch(
            "keyring.get_password",
            side_effect=keyring.errors.KeyringError("locked"),
        ):
            assert KeyringStore().get("service", "key") is None

    def test_set_raises_cache_error(self):
        with mock.patch(
            "keyring.set_password",
            side_effect=keyring.errors.PasswordSetError("no"),
        ):
            with pytest.raises(CacheError):
                KeyringStore().set("service", "key", "value")

    def test_delete_missing_is_fine(self):
        with mock.patch(
            "keyring.delete_password",
            side_effect=keyring.errors.PasswordDeleteError("missing"),
        ):
            KeyringStore().delete("service", "key")

    def test_delete_failure(self):
        with mock.patch(
            "keyring.delete_password",
            side_effect=keyring.errors.KeyringError("locked"),
        ):
            with pytest.raises(CacheError):
                KeyringStore().delete("service", "key")
