import unittest

from bson import ObjectId

from agrobridge.crops import create_crop, get_crop, update_crop
from agrobridge.db import InMemoryMarketStore
from agrobridge.errors import ConflictError, NotFoundError, ValidationError
from agrobridge.interests import (
    interest_sort,
    list_interests,
    submit_interest,
    transition_interest_status,
)

OWNER = {"ownerEmail": "farmer@example.com", "ownerName": "Farmer Joe"}


def crop_payload(**overrides):
    payload = {
        "name": "Basmati Rice",
        "type": "Grain",
        "pricePerUnit": 5,
        "unit": "kg",
        "quantity": 10,
        "description": "Long grain aromatic rice",
        "location": "Dinajpur",
        "image": "https://img.example/rice.png",
        "owner": dict(OWNER),
    }
    payload.update(overrides)
    return payload


def interest_payload(crop_id, **overrides):
    payload = {
        "cropId": crop_id,
        "userEmail": "buyer@example.com",
        "userName": "Buyer Bee",
        "quantity": 4,
        "message": "Can you deliver?",
    }
    payload.update(overrides)
    return payload


class SubmitInterestTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryMarketStore()
        self.crop = create_crop(self.store, crop_payload())

    def test_submit_computes_total_price_and_starts_pending(self):
        crop, interest = submit_interest(
            self.store, interest_payload(self.crop["_id"])
        )
        self.assertEqual(interest["totalPrice"], 20)
        self.assertEqual(interest["status"], "pending")
        self.assertEqual(interest["cropName"], "Basmati Rice")
        self.assertEqual(interest["ownerEmail"], OWNER["ownerEmail"])
        self.assertEqual(interest["ownerName"], OWNER["ownerName"])
        self.assertIsNone(interest["userPhoto"])
        self.assertTrue(ObjectId.is_valid(interest["_id"]))
        self.assertEqual(len(crop["interests"]), 1)
        self.assertEqual(crop["interests"][0]["_id"], interest["_id"])
        self.assertGreaterEqual(crop["updatedAt"], self.crop["updatedAt"])

    def test_message_defaults_to_empty_string(self):
        payload = interest_payload(self.crop["_id"])
        del payload["message"]
        _, interest = submit_interest(self.store, payload)
        self.assertEqual(interest["message"], "")

    def test_numeric_string_quantity_is_coerced(self):
        _, interest = submit_interest(
            self.store, interest_payload(self.crop["_id"], quantity="3")
        )
        self.assertEqual(interest["quantity"], 3)
        self.assertEqual(interest["totalPrice"], 15)

    def test_second_submission_from_same_email_conflicts(self):
        submit_interest(self.store, interest_payload(self.crop["_id"]))
        with self.assertRaises(ConflictError):
            submit_interest(
                self.store,
                interest_payload(self.crop["_id"], quantity=1, message="again"),
            )
        self.assertEqual(len(get_crop(self.store, self.crop["_id"])["interests"]), 1)

    def test_owner_cannot_send_interest(self):
        with self.assertRaises(ValidationError) as ctx:
            submit_interest(
                self.store,
                interest_payload(self.crop["_id"], userEmail=OWNER["ownerEmail"]),
            )
        self.assertEqual(ctx.exception.message, "Owners cannot send interests")

    def test_missing_fields(self):
        for field in ("cropId", "userEmail", "userName", "quantity"):
            payload = interest_payload(self.crop["_id"])
            del payload[field]
            with self.assertRaises(ValidationError) as ctx:
                submit_interest(self.store, payload)
            self.assertEqual(ctx.exception.message, "Missing required interest fields")

    def test_invalid_crop_id(self):
        with self.assertRaises(ValidationError) as ctx:
            submit_interest(self.store, interest_payload("not-an-id"))
        self.assertEqual(ctx.exception.message, "Invalid crop id")

    def test_quantity_below_one(self):
        for quantity in ("0.5", -2, "lots"):
            with self.assertRaises(ValidationError) as ctx:
                submit_interest(
                    self.store, interest_payload(self.crop["_id"], quantity=quantity)
                )
            self.assertEqual(ctx.exception.message, "Quantity must be at least 1")

    def test_unknown_crop(self):
        with self.assertRaises(NotFoundError):
            submit_interest(self.store, interest_payload(str(ObjectId())))

    def test_conditional_append_reports_conflict(self):
        store = _RacingSubmissionStore()
        crop = create_crop(store, crop_payload())
        with self.assertRaises(ConflictError):
            submit_interest(store, interest_payload(crop["_id"]))


class _RacingSubmissionStore(InMemoryMarketStore):
    """Lets another submission from the same email land just before ours."""

    def push_interest(self, crop_id, interest):
        rival = dict(interest, _id=str(ObjectId()))
        super().push_interest(crop_id, rival)
        return super().push_interest(crop_id, interest)


class _DrainingStore(InMemoryMarketStore):
    """Reduces stock between the service's read and its guarded write."""

    def set_interest_status(self, crop_id, interest_id, status, *, reserve_quantity=None):
        self.crops[crop_id]["quantity"] = 0
        return super().set_interest_status(
            crop_id, interest_id, status, reserve_quantity=reserve_quantity
        )


class TransitionInterestTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryMarketStore()
        self.crop = create_crop(self.store, crop_payload(quantity=10, pricePerUnit=5))
        _, self.interest = submit_interest(
            self.store, interest_payload(self.crop["_id"], quantity=4)
        )

    def _transition(self, status, interest_id=None, crop_id=None):
        return transition_interest_status(
            self.store,
            interest_id or self.interest["_id"],
            {"cropId": crop_id or self.crop["_id"], "status": status},
        )

    def test_accept_decrements_quantity(self):
        crop = self._transition("accepted")
        self.assertEqual(crop["quantity"], 6)
        self.assertEqual(crop["interests"][0]["status"], "accepted")
        self.assertEqual(get_crop(self.store, self.crop["_id"])["quantity"], 6)

    def test_accept_with_insufficient_quantity_leaves_crop_unchanged(self):
        crop = create_crop(self.store, crop_payload(name="Okra", quantity=3))
        _, interest = submit_interest(
            self.store, interest_payload(crop["_id"], quantity=5)
        )
        with self.assertRaises(ValidationError) as ctx:
            transition_interest_status(
                self.store, interest["_id"], {"cropId": crop["_id"], "status": "accepted"}
            )
        self.assertEqual(ctx.exception.message, "Insufficient crop quantity")
        current = get_crop(self.store, crop["_id"])
        self.assertEqual(current["quantity"], 3)
        self.assertEqual(current["interests"][0]["status"], "pending")

    def test_second_accept_sees_decremented_quantity(self):
        _, second = submit_interest(
            self.store,
            interest_payload(self.crop["_id"], userEmail="other@example.com", quantity=7),
        )
        self._transition("accepted")
        with self.assertRaises(ValidationError):
            self._transition("accepted", interest_id=second["_id"])
        self.assertEqual(get_crop(self.store, self.crop["_id"])["quantity"], 6)

    def test_reaccepting_does_not_decrement_twice(self):
        self._transition("accepted")
        with self.assertRaises(ValidationError) as ctx:
            self._transition("accepted")
        self.assertEqual(ctx.exception.message, "Only pending interests can be accepted")
        self.assertEqual(get_crop(self.store, self.crop["_id"])["quantity"], 6)

    def test_reject_and_reopen_leave_quantity_alone(self):
        crop = self._transition("rejected")
        self.assertEqual(crop["quantity"], 10)
        self.assertEqual(crop["interests"][0]["status"], "rejected")

        self._transition("pending")
        crop = self._transition("accepted")
        self.assertEqual(crop["quantity"], 6)

        # Moving back to pending does not restore stock.
        crop = self._transition("pending")
        self.assertEqual(crop["quantity"], 6)

    def test_requires_crop_id_and_status(self):
        with self.assertRaises(ValidationError) as ctx:
            transition_interest_status(self.store, self.interest["_id"], {"status": "accepted"})
        self.assertEqual(ctx.exception.message, "cropId and status are required")

    def test_rejects_malformed_ids(self):
        with self.assertRaises(ValidationError) as ctx:
            self._transition("accepted", interest_id="bogus")
        self.assertEqual(ctx.exception.message, "Invalid id provided")

    def test_unknown_crop_and_interest(self):
        with self.assertRaises(NotFoundError) as ctx:
            self._transition("accepted", crop_id=str(ObjectId()))
        self.assertEqual(ctx.exception.message, "Crop not found")
        with self.assertRaises(NotFoundError) as ctx:
            self._transition("accepted", interest_id=str(ObjectId()))
        self.assertEqual(ctx.exception.message, "Interest not found")

    def test_unknown_status(self):
        with self.assertRaises(ValidationError) as ctx:
            self._transition("shipped")
        self.assertEqual(ctx.exception.message, "Invalid status")

    def test_guarded_write_failure_is_explained(self):
        store = _DrainingStore()
        crop = create_crop(store, crop_payload(quantity=10))
        _, interest = submit_interest(store, interest_payload(crop["_id"], quantity=4))
        with self.assertRaises(ValidationError) as ctx:
            transition_interest_status(
                store, interest["_id"], {"cropId": crop["_id"], "status": "accepted"}
            )
        self.assertEqual(ctx.exception.message, "Insufficient crop quantity")
        self.assertEqual(store.get_crop(crop["_id"])["interests"][0]["status"], "pending")


class ListInterestTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryMarketStore()
        self.rice = create_crop(self.store, crop_payload())
        self.wheat = create_crop(
            self.store, crop_payload(name="Wheat", pricePerUnit=2, quantity=50)
        )
        _, self.rice_interest = submit_interest(
            self.store, interest_payload(self.rice["_id"], quantity=2)
        )
        _, self.wheat_interest = submit_interest(
            self.store, interest_payload(self.wheat["_id"], quantity=9)
        )
        submit_interest(
            self.store,
            interest_payload(self.rice["_id"], userEmail="someone@example.com"),
        )

    def test_requires_email(self):
        with self.assertRaises(ValidationError):
            list_interests(self.store, "")

    def test_only_requester_interests_with_current_crop_details(self):
        update_crop(
            self.store,
            self.rice["_id"],
            {"name": "Premium Rice", "pricePerUnit": 8, "location": "Rangpur"},
        )
        items = list_interests(self.store, "buyer@example.com")
        self.assertEqual(len(items), 2)
        self.assertTrue(all(i["userEmail"] == "buyer@example.com" for i in items))

        rice_item = next(i for i in items if i["_id"] == self.rice_interest["_id"])
        self.assertEqual(rice_item["cropName"], "Premium Rice")
        self.assertEqual(rice_item["pricePerUnit"], 8)
        self.assertEqual(rice_item["location"], "Rangpur")
        self.assertEqual(rice_item["unit"], "kg")
        self.assertEqual(rice_item["cropImage"], "https://img.example/rice.png")
        # Total price stays as computed at submission.
        self.assertEqual(rice_item["totalPrice"], 10)

    def test_sort_orders(self):
        desc = list_interests(self.store, "buyer@example.com", "quantity-desc")
        self.assertEqual([i["quantity"] for i in desc], [9, 2])
        asc = list_interests(self.store, "buyer@example.com", "quantity-asc")
        self.assertEqual([i["quantity"] for i in asc], [2, 9])

        transition_interest_status(
            self.store,
            self.rice_interest["_id"],
            {"cropId": self.rice["_id"], "status": "rejected"},
        )
        by_status = list_interests(self.store, "buyer@example.com", "status")
        self.assertEqual([i["status"] for i in by_status], ["pending", "rejected"])

    def test_sort_keys(self):
        self.assertEqual(interest_sort("status"), [("status", 1), ("createdAt", -1)])
        self.assertEqual(interest_sort(None), [("createdAt", -1)])
        self.assertEqual(interest_sort("unknown"), [("createdAt", -1)])


if __name__ == "__main__":
    unittest.main()
