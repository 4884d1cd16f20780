"""
Promotional Schedule Builder

Converts a freshly created subscription into a two-phase schedule: one billing
period at the discounted price, then the regular recurring price with no end.
"""

import logging
from dataclasses import dataclass
from typing import Any

import stripe

from src.constants import METADATA_SCHEDULE_TYPE, SCHEDULE_TYPE_PROMOTIONAL
from src.utils.exceptions import SchedulingError
from src.utils.stripe_objects import get_object_id, get_stripe_object_value, metadata_to_dict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduleResult:
    schedule_id: str
    subscription_id: str
    created: bool = True
    changed: bool = True


def schedule_idempotency_key(subscription_id: str) -> str:
    return f"promo-schedule-{subscription_id}"


def is_promotional_schedule(schedule: Any) -> bool:
    """True when the schedule's phases were already written by this builder."""
    metadata = metadata_to_dict(get_stripe_object_value(schedule, "metadata"))
    return metadata.get(METADATA_SCHEDULE_TYPE) == SCHEDULE_TYPE_PROMOTIONAL


class PromotionalScheduleBuilder:
    """Builds the discounted-then-recurring schedule for a subscription"""

    def __init__(self, billing_provider):
        self.billing_provider = billing_provider

    def build_schedule(
        self,
        subscription_id: str,
        discounted_price_id: str,
        recurring_price_id: str,
        existing_schedule: Any = None,
    ) -> ScheduleResult:
        """
        Attach a promotional schedule to ``subscription_id``.

        Phase one keeps the subscription's current period on ``discounted_price_id``
        for exactly one iteration. Phase two moves to ``recurring_price_id`` with no
        iteration limit and the schedule releases the subscription when it ends,
        so billing continues indefinitely.

        Stripe only accepts ``from_subscription`` on its own, so the schedule is
        created first and its phases are rewritten in a second call. The create
        call carries an idempotency key derived from the subscription id, which
        makes a redelivered event reuse the schedule of the first attempt.

        ``existing_schedule`` (an id or a schedule object) is the schedule already
        attached to the subscription. It is left alone when it is promotional;
        otherwise its phases are rewritten, which completes a build whose phase
        update failed on an earlier delivery.

        Raises:
            SchedulingError: if any Stripe call fails
        """
        if not subscription_id or not discounted_price_id or not recurring_price_id:
            raise SchedulingError(
                "subscription id and both price ids are required", subscription_id=subscription_id
            )

        created = existing_schedule is None
        try:
            if created:
                schedule = self.billing_provider.create_subscription_schedule(
                    subscription_id, idempotency_key=schedule_idempotency_key(subscription_id)
                )
            elif isinstance(existing_schedule, str):
                schedule = self.billing_provider.retrieve_subscription_schedule(existing_schedule)
            else:
                schedule = existing_schedule

            schedule_id = get_object_id(schedule)
            if not created and is_promotional_schedule(schedule):
                logger.info(
                    f"Subscription {subscription_id} already has promotional schedule {schedule_id}"
                )
                return ScheduleResult(
                    schedule_id=schedule_id,
                    subscription_id=subscription_id,
                    created=False,
                    changed=False,
                )

            current_phase = get_stripe_object_value(schedule, "current_phase") or {}
            phase_start = get_stripe_object_value(current_phase, "start_date")

            first_phase = {
                "items": [{"price": discounted_price_id, "quantity": 1}],
                "iterations": 1,
            }
            if phase_start is not None:
                first_phase["start_date"] = phase_start

            self.billing_provider.update_subscription_schedule(
                schedule_id,
                phases=[
                    first_phase,
                    {"items": [{"price": recurring_price_id, "quantity": 1}]},
                ],
                end_behavior="release",
                metadata={METADATA_SCHEDULE_TYPE: SCHEDULE_TYPE_PROMOTIONAL},
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe error building promotional schedule for {subscription_id}: {e}")
            raise SchedulingError(str(e), subscription_id=subscription_id) from e

        logger.info(
            f"{'Created' if created else 'Rewrote'} promotional schedule {schedule_id} for "
            f"subscription {subscription_id}: {discounted_price_id} x1 then {recurring_price_id}"
        )
        return ScheduleResult(schedule_id=schedule_id, subscription_id=subscription_id, created=created)
