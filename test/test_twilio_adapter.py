"""Tests for the Twilio messaging adapter."""

from unittest.mock import MagicMock

import httpx
import pytest

from leadcatcher.telephony.config import ProviderType, TelephonyConfig
from leadcatcher.telephony.interface import MessageSendError, OutboundMessage
from leadcatcher.telephony.twilio_adapter import TwilioAdapter, compute_twilio_signature


@pytest.fixture
def twilio_config() -> TelephonyConfig:
    return TelephonyConfig(
        provider_type=ProviderType.TWILIO,
        twilio_account_sid="AC_TEST_ACCOUNT_SID",
        twilio_auth_token="test_auth_token_12345",
        webhook_base_url="https://example.com",
    )


@pytest.fixture
def message() -> OutboundMessage:
    return OutboundMessage(to="+14155551234", from_number="+14155550000", body="We missed your call!")


class TestTwilioAdapterSendSync:
    def test_send_success(self, twilio_config: TelephonyConfig, message: OutboundMessage) -> None:
        mock_client = MagicMock(spec=httpx.Client)
        mock_client.post.return_value = httpx.Response(
            status_code=201,
            json={"sid": "SM_TEST_SID_123", "status": "queued", "to": message.to},
        )

        adapter = TwilioAdapter(config=twilio_config, http_client=mock_client)
        sent = adapter.send_message_sync(message)

        assert sent.provider_message_id == "SM_TEST_SID_123"
        assert sent.status == "queued"

        call_args = mock_client.post.call_args
        assert call_args[0][0].endswith("/Accounts/AC_TEST_ACCOUNT_SID/Messages.json")
        assert call_args[1]["data"] == {"To": message.to, "From": message.from_number, "Body": message.body}
        assert call_args[1]["auth"] == ("AC_TEST_ACCOUNT_SID", "test_auth_token_12345")

    def test_send_api_error(self, twilio_config: TelephonyConfig, message: OutboundMessage) -> None:
        mock_client = MagicMock(spec=httpx.Client)
        mock_client.post.return_value = httpx.Response(
            status_code=400,
            json={"code": 21211, "message": "Invalid 'To' Phone Number"},
        )

        adapter = TwilioAdapter(config=twilio_config, http_client=mock_client)

        with pytest.raises(MessageSendError) as exc_info:
            adapter.send_message_sync(message)

        assert "Invalid 'To' Phone Number" in str(exc_info.value)
        assert exc_info.value.error_code == "21211"

    def test_send_http_error(self, twilio_config: TelephonyConfig, message: OutboundMessage) -> None:
        mock_client = MagicMock(spec=httpx.Client)
        mock_client.post.side_effect = httpx.ConnectError("Connection refused")

        adapter = TwilioAdapter(config=twilio_config, http_client=mock_client)

        with pytest.raises(MessageSendError) as exc_info:
            adapter.send_message_sync(message)

        assert exc_info.value.error_code == "HTTP_ERROR"

    def test_send_non_json_error_page(self, twilio_config: TelephonyConfig, message: OutboundMessage) -> None:
        mock_client = MagicMock(spec=httpx.Client)
        mock_client.post.return_value = httpx.Response(status_code=502, text="<html>Bad Gateway</html>")

        adapter = TwilioAdapter(config=twilio_config, http_client=mock_client)

        with pytest.raises(MessageSendError) as exc_info:
            adapter.send_message_sync(message)

        assert exc_info.value.error_code == "502"

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(status_code=201, text="not json"),
            httpx.Response(status_code=201, json={"status": "queued"}),
            httpx.Response(status_code=201, json=["SM_1"]),
        ],
    )
    def test_send_success_without_sid(
        self,
        response: httpx.Response,
        twilio_config: TelephonyConfig,
        message: OutboundMessage,
    ) -> None:
        mock_client = MagicMock(spec=httpx.Client)
        mock_client.post.return_value = response

        adapter = TwilioAdapter(config=twilio_config, http_client=mock_client)

        with pytest.raises(MessageSendError) as exc_info:
            adapter.send_message_sync(message)

        assert exc_info.value.error_code == "INVALID_RESPONSE"


class TestTwilioAdapterSendAsync:
    @pytest.mark.asyncio
    async def test_send_runs_sync_client(self, twilio_config: TelephonyConfig, message: OutboundMessage) -> None:
        mock_client = MagicMock(spec=httpx.Client)
        mock_client.post.return_value = httpx.Response(status_code=201, json={"sid": "SM_1"})

        sent = await TwilioAdapter(config=twilio_config, http_client=mock_client).send_message(message)

        assert sent.provider_message_id == "SM_1"
        mock_client.post.assert_called_once()


class TestSignatureValidation:
    URL = "https://example.com/webhooks/twilio/sms"
    PARAMS = {"MessageSid": "SM1", "From": "+14155551234", "Body": "hi"}

    def test_param_order_does_not_matter(self) -> None:
        reordered = dict(reversed(list(self.PARAMS.items())))

        assert compute_twilio_signature("tok", self.URL, self.PARAMS) == compute_twilio_signature(
            "tok", self.URL, reordered
        )

    def test_url_is_part_of_signature(self) -> None:
        assert compute_twilio_signature("tok", self.URL, self.PARAMS) != compute_twilio_signature(
            "tok", self.URL + "?x=1", self.PARAMS
        )

    def test_valid_signature(self, twilio_config: TelephonyConfig) -> None:
        adapter = TwilioAdapter(config=twilio_config, http_client=MagicMock(spec=httpx.Client))
        signature = compute_twilio_signature("test_auth_token_12345", self.URL, self.PARAMS)

        assert adapter.validate_webhook_signature(self.URL, self.PARAMS, signature)

    def test_tampered_params(self, twilio_config: TelephonyConfig) -> None:
        adapter = TwilioAdapter(config=twilio_config, http_client=MagicMock(spec=httpx.Client))
        signature = compute_twilio_signature("test_auth_token_12345", self.URL, self.PARAMS)

        assert not adapter.validate_webhook_signature(self.URL, {**self.PARAMS, "Body": "STOP"}, signature)

    def test_missing_signature(self, twilio_config: TelephonyConfig) -> None:
        adapter = TwilioAdapter(config=twilio_config, http_client=MagicMock(spec=httpx.Client))

        assert not adapter.validate_webhook_signature(self.URL, self.PARAMS, "")

    def test_missing_token_rejects(self) -> None:
        adapter = TwilioAdapter(
            config=TelephonyConfig(twilio_account_sid="AC1", twilio_auth_token=""),
            http_client=MagicMock(spec=httpx.Client),
        )

        assert not adapter.validate_webhook_signature(self.URL, self.PARAMS, "anything")


class TestClientLifecycle:
    def test_close_releases_owned_client(self, twilio_config: TelephonyConfig) -> None:
        adapter = TwilioAdapter(config=twilio_config)
        client = adapter._get_client()

        adapter.close()

        assert client.is_closed
        assert adapter._http_client is None

    def test_close_leaves_injected_client_open(self, twilio_config: TelephonyConfig) -> None:
        mock_client = MagicMock(spec=httpx.Client)
        adapter = TwilioAdapter(config=twilio_config, http_client=mock_client)

        adapter.close()

        mock_client.close.assert_not_called()
