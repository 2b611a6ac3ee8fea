"""
Integration tests for merchant application creation and submission.
"""

from unittest.mock import AsyncMock

import pytest
from fastapi import status
from httpx import AsyncClient
from sqlalchemy.exc import OperationalError

from adapters.payments.gettrx_adapter import GettrxAPIError, GettrxTimeoutError
from services.merchant_onboarding import (
    ApplicationNotFoundError,
    MerchantOnboardingService,
    SubmissionError,
)


class TestSubmitApplication:
    """Tests for MerchantOnboardingService.submit_application."""

    @pytest.mark.asyncio
    async def test_successful_submission(
        self, db_session, fake_gateway, organization, merchant_application
    ):
        service = MerchantOnboardingService(db_session, fake_gateway)

        result = await service.submit_application(organization.id)

        assert fake_gateway.submissions == [merchant_application.external_application_id]
        assert result["status"] == "submitted"
        assert result["submission_attempts"] == 1
        await db_session.refresh(merchant_application)
        await db_session.refresh(organization)
        assert merchant_application.status == "submitted"
        assert merchant_application.submission_status == "submitted"
        assert merchant_application.submitted_at is not None
        assert merchant_application.last_error is None
        assert organization.merchant_status == "submitted"

    @pytest.mark.asyncio
    async def test_already_submitted_is_refused(
        self, db_session, fake_gateway, organization, merchant_application
    ):
        merchant_application.status = "approved"
        await db_session.commit()
        service = MerchantOnboardingService(db_session, fake_gateway)

        with pytest.raises(SubmissionError) as exc_info:
            await service.submit_application(organization.id)

        assert exc_info.value.code == "ALREADY_SUBMITTED"
        assert fake_gateway.submissions == []

    @pytest.mark.asyncio
    async def test_gateway_refusal_records_attempt(
        self, db_session, fake_gateway, organization, merchant_application
    ):
        fake_gateway.submit_error = GettrxAPIError(
            "Application is missing signatures", status_code=400, code="NOT_READY"
        )
        service = MerchantOnboardingService(db_session, fake_gateway)

        with pytest.raises(SubmissionError) as exc_info:
            await service.submit_application(organization.id)

        assert exc_info.value.code == "NOT_READY"
        await db_session.refresh(merchant_application)
        assert merchant_application.status == "created"
        assert merchant_application.submission_attempts == 1
        assert merchant_application.last_error == "Application is missing signatures"

    @pytest.mark.asyncio
    async def test_retry_after_failure_clears_error(
        self, db_session, fake_gateway, organization, merchant_application
    ):
        fake_gateway.submit_error = GettrxTimeoutError("Request timed out")
        service = MerchantOnboardingService(db_session, fake_gateway)
        with pytest.raises(SubmissionError) as exc_info:
            await service.submit_application(organization.id)
        assert exc_info.value.code == "SUBMISSION_FAILED"

        fake_gateway.submit_error = None
        result = await service.submit_application(organization.id)

        assert result["submission_attempts"] == 2
        await db_session.refresh(merchant_application)
        assert merchant_application.last_error is None

    @pytest.mark.asyncio
    async def test_persistence_failure_still_counts_attempt(
        self, db_session, fake_gateway, organization, merchant_application
    ):
        service = MerchantOnboardingService(db_session, fake_gateway)
        service.organizations.update_merchant_status = AsyncMock(
            side_effect=OperationalError("UPDATE organizations", {}, Exception("database is locked"))
        )

        with pytest.raises(OperationalError):
            await service.submit_application(organization.id)

        await db_session.refresh(merchant_application)
        assert merchant_application.status == "created"
        assert merchant_application.submission_attempts == 1
        assert merchant_application.last_error == "Failed to persist submission"

    @pytest.mark.asyncio
    async def test_missing_application(self, db_session, fake_gateway, organization):
        service = MerchantOnboardingService(db_session, fake_gateway)

        with pytest.raises(ApplicationNotFoundError):
            await service.submit_application(organization.id)


class TestMerchantApplicationEndpoints:
    """HTTP surface for merchant onboarding."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, async_client: AsyncClient, organization, internal_headers):
        url = f"/api/v1/organizations/{organization.id}/merchant-application"

        created = await async_client.post(
            url, json={"external_application_id": "app_new_1"}, headers=internal_headers
        )
        fetched = await async_client.get(url, headers=internal_headers)

        assert created.status_code == status.HTTP_201_CREATED
        assert created.json()["status"] == "created"
        assert created.json()["submission_attempts"] == 0
        assert fetched.status_code == status.HTTP_200_OK
        assert fetched.json()["external_application_id"] == "app_new_1"

    @pytest.mark.asyncio
    async def test_duplicate_external_id_returns_409(
        self, async_client: AsyncClient, organization, merchant_application, internal_headers
    ):
        response = await async_client.post(
            f"/api/v1/organizations/{organization.id}/merchant-application",
            json={"external_application_id": merchant_application.external_application_id},
            headers=internal_headers,
        )

        assert response.status_code == status.HTTP_409_CONFLICT

    @pytest.mark.asyncio
    async def test_create_for_unknown_organization(self, async_client: AsyncClient, internal_headers):
        response = await async_client.post(
            "/api/v1/organizations/missing/merchant-application",
            json={"external_application_id": "app_x"},
            headers=internal_headers,
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND

    @pytest.mark.asyncio
    async def test_get_without_application(self, async_client: AsyncClient, organization, internal_headers):
        response = await async_client.get(
            f"/api/v1/organizations/{organization.id}/merchant-application", headers=internal_headers
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND

    @pytest.mark.asyncio
    async def test_submit(
        self, async_client: AsyncClient, organization, merchant_application, internal_headers
    ):
        url = f"/api/v1/organizations/{organization.id}/merchant-application/submit"

        first = await async_client.post(url, headers=internal_headers)
        second = await async_client.post(url, headers=internal_headers)

        assert first.status_code == status.HTTP_200_OK
        assert first.json()["status"] == "submitted"
        assert first.json()["submission_attempts"] == 1
        assert second.status_code == status.HTTP_409_CONFLICT
        assert second.json()["detail"]["code"] == "ALREADY_SUBMITTED"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "code,expected",
        [
            ("NOT_READY", status.HTTP_400_BAD_REQUEST),
            ("APPLICATION_NOT_FOUND", status.HTTP_404_NOT_FOUND),
            ("SUBMISSION_FAILED", status.HTTP_502_BAD_GATEWAY),
        ],
    )
    async def test_submit_gateway_errors(
        self,
        async_client: AsyncClient,
        fake_gateway,
        organization,
        merchant_application,
        internal_headers,
        code,
        expected,
    ):
        fake_gateway.submit_error = GettrxAPIError("refused", status_code=400, code=code)

        response = await async_client.post(
            f"/api/v1/organizations/{organization.id}/merchant-application/submit",
            headers=internal_headers,
        )

        assert response.status_code == expected
        assert response.json()["detail"]["code"] == code
