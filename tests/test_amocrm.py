# tests/test_amocrm.py

"""
Ce qu'on teste :
→ 401 → un refresh → une seule nouvelle tentative
→ deal absent → None, pas d'exception
→ les lookups best-effort avalent leurs erreurs
→ la normalisation du deal brut

Ce qu'on ne teste PAS :
→ les vraies APIs (pas de tokens en test)
"""

import pytest
import requests
from unittest.mock import MagicMock, patch

from conftest import TARGET_PIPELINE_ID, fake_response
from connectors.crm.amocrm import AmoCRMConnector
from models import Deal, RefreshResult


def make_connector(settings, refresh_result=RefreshResult.REFRESHED):
    tokens = MagicMock()
    tokens.access_token = "access-0"
    tokens.refresh.return_value = refresh_result
    return AmoCRMConnector(settings, tokens), tokens


class TestAuthRetry:

    def test_401_refreshes_and_retries_once(self, settings, raw_deal):
        connector, tokens = make_connector(settings)

        with patch("connectors.crm.amocrm.requests.request", side_effect=[
            fake_response(401),
            fake_response(200, raw_deal),
        ]) as request:
            deal = connector.get_deal(31415)

        assert deal.id == 31415
        tokens.refresh.assert_called_once()
        assert request.call_count == 2

    def test_second_401_is_raised(self, settings):
        connector, tokens = make_connector(settings)

        with patch("connectors.crm.amocrm.requests.request", side_effect=[
            fake_response(401),
            fake_response(401),
        ]) as request:
            with pytest.raises(requests.HTTPError):
                connector.get_deal(31415)

        assert request.call_count == 2
        tokens.refresh.assert_called_once()

    def test_failed_refresh_raises_without_retry(self, settings):
        connector, _ = make_connector(settings, RefreshResult.FAILED)

        with patch("connectors.crm.amocrm.requests.request",
                   return_value=fake_response(401)) as request:
            with pytest.raises(requests.HTTPError):
                connector.get_deal(31415)

        assert request.call_count == 1

    def test_skipped_refresh_waits_for_other_thread(self, settings, raw_deal):
        connector, tokens = make_connector(settings, RefreshResult.SKIPPED)

        with patch("connectors.crm.amocrm.requests.request", side_effect=[
            fake_response(401),
            fake_response(200, raw_deal),
        ]):
            assert connector.get_deal(31415) is not None

        tokens.wait_until_idle.assert_called_once()

    def test_bearer_header_uses_current_token(self, settings):
        connector, tokens = make_connector(settings)
        tokens.access_token = "access-9"

        assert connector._get_headers()["Authorization"] == "Bearer access-9"


class TestGetDeal:

    def setup_method(self):
        self.patcher = patch("connectors.crm.amocrm.requests.request")
        self.request = self.patcher.start()

    def teardown_method(self):
        self.patcher.stop()

    def test_not_found_returns_none(self, settings):
        connector, _ = make_connector(settings)
        self.request.return_value = fake_response(404)

        assert connector.get_deal(1) is None

    def test_no_content_returns_none(self, settings):
        connector, _ = make_connector(settings)
        self.request.return_value = fake_response(204)

        assert connector.get_deal(1) is None

    def test_server_error_raises(self, settings):
        connector, _ = make_connector(settings)
        self.request.return_value = fake_response(500)

        with pytest.raises(requests.HTTPError):
            connector.get_deal(1)

    def test_requests_embedded_entities(self, settings, raw_deal):
        connector, _ = make_connector(settings)
        self.request.return_value = fake_response(200, raw_deal)

        connector.get_deal(31415)

        method, url = self.request.call_args.args
        assert method == "GET"
        assert url == "https://example.amocrm.ru/api/v4/leads/31415"
        assert "contacts" in self.request.call_args.kwargs["params"]["with"]


class TestNormalize:

    def setup_method(self):
        self.connector = AmoCRMConnector(MagicMock(amo_domain="x.amocrm.ru"), MagicMock())

    def test_normalize_full_deal(self, raw_deal):
        deal = self.connector._normalize_deal(raw_deal)

        assert isinstance(deal, Deal)
        assert deal.id == 31415
        assert deal.price == 125000.0
        assert deal.pipeline_id == TARGET_PIPELINE_ID
        assert deal.status_id == 501
        assert deal.responsible_user_id == 900
        assert deal.contact_ids == (11, 12)
        assert deal.company_ids == (21,)
        assert deal.is_deleted is False

    def test_normalize_minimal_deal(self):
        deal = self.connector._normalize_deal({"id": "77"})

        assert deal.id == 77
        assert deal.name == ""
        assert deal.price == 0.0
        assert deal.pipeline_id is None
        assert deal.contact_ids == ()

    def test_normalize_without_id(self):
        assert self.connector._normalize_deal({"name": "orphelin"}) is None


class TestLookups:

    def test_best_effort_lookup_swallows_errors(self, settings):
        connector, _ = make_connector(settings)

        with patch("connectors.crm.amocrm.requests.request",
                   side_effect=requests.ConnectionError("down")):
            assert connector.get_user(900) is None
            assert connector.get_contact(11) is None
            assert connector.get_company(21) is None

    def test_pipelines_flatten_embedded_statuses(self, settings):
        connector, _ = make_connector(settings)
        body = {"_embedded": {"pipelines": [{
            "id": TARGET_PIPELINE_ID,
            "name": "ЕВГ СПБ",
            "_embedded": {"statuses": [{"id": 501, "name": "Переговоры"}]},
        }]}}

        with patch("connectors.crm.amocrm.requests.request",
                   return_value=fake_response(200, body)):
            pipelines = connector.get_pipelines()

        assert pipelines[0]["statuses"] == [{"id": 501, "name": "Переговоры"}]

    def test_pipeline_lookup_failure_raises(self, settings):
        connector, _ = make_connector(settings)

        with patch("connectors.crm.amocrm.requests.request",
                   return_value=fake_response(503)):
            with pytest.raises(requests.HTTPError):
                connector.get_pipelines()

    def test_find_pipeline_is_case_insensitive_substring(self, settings, pipelines):
        connector, _ = make_connector(settings)

        with patch.object(connector, "get_pipelines", return_value=pipelines):
            assert connector.find_pipeline_by_name("евг спб")["id"] == TARGET_PIPELINE_ID
            assert connector.find_pipeline_by_name("Казань") is None


class TestCustomFields:

    def setup_method(self):
        self.connector = AmoCRMConnector(MagicMock(amo_domain="x.amocrm.ru"), MagicMock())

    def test_extract_phone_and_email(self, contact):
        assert self.connector.extract_phone(contact) == "+7 900 000-00-00"
        assert self.connector.extract_email(contact) == "ivan@example.ru"

    def test_extract_by_field_name(self):
        contact = {"custom_fields_values": [
            {"field_name": "Телефон", "values": [{"value": "8 800 555 35 35"}]},
        ]}
        assert self.connector.extract_phone(contact) == "8 800 555 35 35"

    def test_missing_contact_gives_empty_string(self):
        assert self.connector.extract_phone(None) == ""
        assert self.connector.extract_email({"custom_fields_values": None}) == ""
