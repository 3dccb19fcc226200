"""
API endpoint tests: marketplace and settlement flow over HTTP
"""
import pytest

from edufund.core.money import ripple_to_unix
from edufund.modules.agreements.services import LifecycleService
from fakes import COMPANY, PAST_INSTALLMENTS, SCHOOL, STUDENT, offer_payload, repayment, request_payload


class TestHealthEndpoints:
    """Tests for health check endpoints"""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_health_check(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert "version" in data

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_root_endpoint(self, client):
        response = await client.get("/")

        assert response.status_code == 200
        assert "EduFund" in response.json()["message"]


class TestLoanRequestEndpoints:

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_create_and_read(self, client):
        response = await client.post("/api/loan-requests", json=request_payload())
        assert response.status_code == 201
        request_id = response.json()["requestId"]

        response = await client.get(f"/api/loan-requests/{request_id}")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "OPEN"
        assert data["totalAmount"] == "4000000"
        assert data["currency"] == "XRP"
        assert [i["amount"] for i in data["installments"]] == ["2000000", "2000000"]

        listing = await client.get("/api/loan-requests", params={"industry": "software"})
        assert [r["id"] for r in listing.json()] == [request_id]
        listing = await client.get("/api/loan-requests", params={"industry": "medicine"})
        assert listing.json() == []

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_missing_request_is_404(self, client):
        response = await client.get("/api/loan-requests/999")

        assert response.status_code == 404
        assert response.json()["error"]["reason"] == "request_not_found"
        assert response.json()["error"]["retryable"] is False

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_invalid_bodies_are_422(self, client):
        response = await client.post("/api/loan-requests", json=request_payload(total="4000001"))
        assert response.status_code == 422

        response = await client.post("/api/loan-requests", json=request_payload(total="4000000.5"))
        assert response.status_code == 422

        response = await client.post("/api/loan-requests", json=request_payload(total="-4000000"))
        assert response.status_code == 422

        huge = "9" * 61
        response = await client.post("/api/loan-requests", json=request_payload(
            total=huge, installments=[{"amount": huge, "dueDate": "2030-01-15"}]
        ))
        assert response.status_code == 422

        response = await client.post("/api/loan-requests", json=request_payload(total="\u0664" + "\u0660" * 6))
        assert response.status_code == 422

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_draft_update_submit_delete(self, client):
        response = await client.post("/api/loan-requests", json={"status": "DRAFT", "program": "MSc"})
        request_id = response.json()["requestId"]

        response = await client.post(f"/api/loan-requests/{request_id}/submit")
        assert response.status_code == 400
        assert response.json()["error"]["reason"] == "request_incomplete"

        response = await client.put(f"/api/loan-requests/{request_id}", json=request_payload())
        assert response.status_code == 200
        assert response.json()["status"] == "DRAFT"

        response = await client.post(f"/api/loan-requests/{request_id}/submit")
        assert response.status_code == 200
        assert response.json()["status"] == "OPEN"

        response = await client.delete(f"/api/loan-requests/{request_id}")
        assert response.status_code == 204
        response = await client.get(f"/api/loan-requests/{request_id}")
        assert response.status_code == 404


class TestOfferEndpoints:

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_offer_lifecycle(self, client, make_request):
        request_id = (await make_request()).id

        response = await client.post(f"/api/loan-requests/{request_id}/offers", json=offer_payload())
        assert response.status_code == 201
        first = response.json()["offerId"]
        response = await client.post(f"/api/loan-requests/{request_id}/offers", json=offer_payload(rate="0.015"))
        second = response.json()["offerId"]

        offers = (await client.get(f"/api/loan-requests/{request_id}/offers")).json()
        assert [(o["id"], o["interestRate"]) for o in offers] == [(first, "0.02"), (second, "0.015")]

        response = await client.post(f"/api/offers/{first}/reject")
        assert response.json()["status"] == "REJECTED"
        response = await client.post(f"/api/offers/{second}/cancel")
        assert response.json()["status"] == "CANCELLED"

        response = await client.post(f"/api/offers/{second}/cancel")
        assert response.status_code == 400
        assert response.json()["error"]["reason"] == "offer_not_pending"

        response = await client.get(f"/api/offers/{first}")
        assert response.json()["companyAddress"] == COMPANY

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_rate_must_be_non_negative(self, client, make_request):
        request_id = (await make_request()).id
        response = await client.post(f"/api/loan-requests/{request_id}/offers", json=offer_payload(rate="-0.01"))
        assert response.status_code == 422

    @pytest.mark.integration
    @pytest.mark.asyncio
    @pytest.mark.parametrize("rate", ["1e5000", "1.5", "0." + "0" * 40 + "1"])
    async def test_rate_is_bounded(self, client, make_request, rate):
        request_id = (await make_request()).id
        response = await client.post(f"/api/loan-requests/{request_id}/offers", json=offer_payload(rate=rate))
        assert response.status_code == 422

        offers = (await client.get(f"/api/loan-requests/{request_id}/offers")).json()
        assert offers == []


class TestPartyListings:

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_company_finds_its_agreement_and_offers(self, client, accepted_agreement, make_request,
                                                          make_offer):
        agreement = await accepted_agreement()
        other = await make_request()
        rival = "rRivalXXXXXXXXXXXXXXXXXXXXXXXXXXX"
        pending = await make_offer(other.id, company=COMPANY)
        await make_offer(other.id, company=rival)

        response = await client.get("/api/loan-agreements", params={"companyAddress": COMPANY})
        assert response.status_code == 200
        assert [a["id"] for a in response.json()] == [agreement.id]
        assert response.json()[0]["status"] == "AWAITING_FUNDING"

        response = await client.get("/api/loan-agreements", params={"companyAddress": rival})
        assert response.json() == []

        offers = (await client.get("/api/offers", params={"companyAddress": COMPANY})).json()
        assert [o["status"] for o in offers] == ["PENDING", "ACCEPTED"]
        assert offers[0]["id"] == pending.id
        offers = (await client.get("/api/offers", params={"companyAddress": COMPANY, "status": "ACCEPTED"})).json()
        assert [o["id"] for o in offers] == [agreement.offer_id]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_student_sees_every_request_and_agreement(self, client, accepted_agreement):
        agreement = await accepted_agreement()
        draft = (await client.post("/api/loan-requests", json={
            "status": "DRAFT", "studentAddress": STUDENT, "program": "MSc",
        })).json()["requestId"]

        requests = (await client.get("/api/loan-requests", params={"studentAddress": STUDENT})).json()
        assert [(r["id"], r["status"]) for r in requests] == [
            (draft, "DRAFT"), (agreement.request_id, "ACCEPTED"),
        ]
        assert (await client.get("/api/loan-requests")).json() == []

        response = await client.get("/api/loan-agreements", params={"studentAddress": STUDENT})
        assert [a["id"] for a in response.json()] == [agreement.id]

        response = await client.get("/api/loan-agreements", params={
            "studentAddress": STUDENT, "companyAddress": SCHOOL,
        })
        assert response.json() == []

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_listing_needs_a_party(self, client):
        response = await client.get("/api/loan-agreements")
        assert response.status_code == 400
        assert response.json()["error"]["reason"] == "party_required"

        response = await client.get("/api/offers")
        assert response.status_code == 422


class TestSettlementFlow:

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_full_flow(self, client, make_request, make_offer, gateway, publisher,
                             db_session, locks):
        request = await make_request(installments=PAST_INSTALLMENTS)
        offer = await make_offer(request.id)

        # Acceptance returns the unsigned mint for the student
        response = await client.post(
            f"/api/loan-requests/{request.id}/accept-offer", json={"offerId": offer.id}
        )
        assert response.status_code == 200
        body = response.json()
        agreement_id = body["agreementId"]
        assert body["mintInstruction"]["TransactionType"] == "NFTokenMint"
        assert body["mintInstruction"]["Account"] == STUDENT
        assert publisher.documents[0]["totalOwed"] == "4080000"

        base = f"/api/loan-agreements/{agreement_id}"
        agreement = (await client.get(base)).json()
        assert (agreement["status"], agreement["totalOwed"], agreement["interestRate"]) == (
            "AWAITING_FUNDING", "4080000", "0.02"
        )

        again = await client.post(f"/api/loan-requests/{request.id}/accept-offer", json={"offerId": offer.id})
        assert again.status_code == 400
        assert again.json()["error"]["reason"] == "request_already_accepted"

        # Mint, transfer offer, company acceptance
        assert (await client.post(f"{base}/record-mint", json={"assetId": "NFT0001"})).json() == {"ok": True}
        instruction = (await client.get(f"{base}/prepare-transfer-offer")).json()["instruction"]
        assert (instruction["NFTokenID"], instruction["Destination"]) == ("NFT0001", COMPANY)
        await client.post(f"{base}/record-transfer-offer", json={"transferOfferRef": "OFFER0001"})
        instruction = (await client.get(f"{base}/prepare-accept-transfer")).json()["instruction"]
        assert (instruction["Account"], instruction["NFTokenSellOffer"]) == (COMPANY, "OFFER0001")
        await client.post(f"{base}/record-accepted", json={"assetId": "NFT0001"})
        assert (await client.get(base)).json()["status"] == "FUNDED"

        # One escrow per installment, owned by the company and paying the school
        locks_body = (await client.get(f"{base}/prepare-escrows")).json()["lockInstructions"]
        assert [item["installmentIndex"] for item in locks_body] == [0, 1]
        for item in locks_body:
            instruction = item["instruction"]
            assert (instruction["Account"], instruction["Destination"], instruction["Amount"]) == (
                COMPANY, SCHOOL, "2000000"
            )
            index = item["installmentIndex"]
            gateway.add_escrow(f"ESCROW{index}", 10 + index, COMPANY, SCHOOL, 2_000_000, 100)
            response = await client.post(f"{base}/record-escrow", json={
                "installmentIndex": index, "lockRef": f"ESCROW{index}", "lockSequence": 10 + index,
            })
            assert response.status_code == 200

        # Release and repayment happen in the background loops
        lifecycle = LifecycleService(db_session, gateway, locks)
        await lifecycle.reconcile_locks(agreement_id, now=ripple_to_unix(100) + 1)
        await lifecycle.apply_repayment(repayment("TXFULL", agreement_id, 4_080_000, STUDENT, COMPANY))
        assert (await client.get(base)).json()["amountPaid"] == "4080000"

        burn = (await client.get(f"{base}/prepare-burn")).json()["burnInstruction"]
        assert (burn["TransactionType"], burn["NFTokenID"]) == ("NFTokenBurn", "NFT0001")
        assert (await client.post(f"{base}/record-burn")).status_code == 200
        assert (await client.get(base)).json()["status"] == "CLOSED"

        events = [event["name"] for event in (await client.get(f"{base}/events")).json()]
        assert events[0] == "created"
        assert events[-1] == "closed"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_out_of_order_steps_are_rejected(self, client, accepted_agreement):
        agreement = await accepted_agreement()
        base = f"/api/loan-agreements/{agreement.id}"

        response = await client.get(f"{base}/prepare-burn")
        assert response.status_code == 400
        assert response.json()["error"]["reason"] == "invalid_status"

        response = await client.get(f"{base}/prepare-transfer-offer")
        assert response.status_code == 400
        assert response.json()["error"]["reason"] == "asset_missing"

        response = await client.get(f"{base}/prepare-escrows")
        assert response.status_code == 400

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_metadata_outage_is_retryable(self, client, make_request, make_offer, publisher):
        request = await make_request()
        offer = await make_offer(request.id)
        publisher.fail = True

        response = await client.post(f"/api/loan-requests/{request.id}/accept-offer", json={"offerId": offer.id})
        assert response.status_code == 503
        assert response.json()["error"]["retryable"] is True

        publisher.fail = False
        response = await client.post(f"/api/loan-requests/{request.id}/accept-offer", json={"offerId": offer.id})
        assert response.status_code == 200
        assert response.json()["mintInstruction"]["TransactionType"] == "NFTokenMint"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_missing_agreement_is_404(self, client):
        response = await client.get("/api/loan-agreements/404/events")
        assert response.status_code == 404
        assert response.json()["error"]["reason"] == "agreement_not_found"
