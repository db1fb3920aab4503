"""Pass pricing — price changes and moving subscriptions onto the new price.

Responsible for:
- Changing a pass's monthly price (new Stripe price, archive the old one,
  append a price history row)
- Migrating one or all of a pass's subscriptions to the current price,
  with prorated adjustment charges issued by Stripe
- Dry-run previews and price history lookups

A price change and the migration that follows it are separate commits:
once the price change is committed it stays, whatever happens to the
migration. Batch migration isolates failures per subscription.
"""

import logging
from decimal import Decimal, InvalidOperation

from garage_billing.errors import InvalidStateError
from garage_billing.models.payment import CENT
from garage_billing.services.stores import (
    PassStore,
    PriceAssignment,
    PriceHistoryStore,
    SubscriptionStore,
)

logger = logging.getLogger(__name__)


def to_price(value):
    """Parse a monthly price into a cent-quantized Decimal.

    Raises ValueError for anything that is not a positive amount in whole
    cents. Sub-cent input is rejected, never rounded.
    """
    try:
        price = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValueError(f"Invalid price: {value!r}")
    if not price.is_finite() or price <= 0:
        raise ValueError("Price must be greater than zero")
    if price != price.quantize(CENT):
        raise ValueError(f"Price must be in whole cents: {value!r}")
    return price.quantize(CENT)


def _money(value):
    return Decimal(value).quantize(CENT) if value is not None else None


class PriceMigrationService:
    def __init__(self, session, gateway):
        self.session = session
        self.gateway = gateway
        self.passes = PassStore(session)
        self.subscriptions = SubscriptionStore(session)
        self.history = PriceHistoryStore(session)

    # ──────────────────────────────────────────────
    # Price changes
    # ──────────────────────────────────────────────

    def update_pass_price(self, pass_id, new_price, changed_by=None,
                          change_reason=None, skip_migration=False,
                          effective_date=None):
        """Change a pass's monthly price and, unless skipped, migrate its subscriptions.

        Stripe work happens first: a new monthly price is created and the
        old one archived. Any Stripe failure aborts before a local write.
        The history row and the pass update are then committed together.

        Returns a dict where "price_changed" and "subscriptions_migrated"
        are reported separately.
        """
        new_price = to_price(new_price)
        pass_ = self.passes.require(pass_id)
        old_price = _money(pass_.monthly_amount)

        if new_price == old_price:
            raise InvalidStateError("New price is the same as the current price")

        old_price_id = pass_.stripe_price_id
        new_price_id = None

        if pass_.stripe_product_id:
            price = self.gateway.create_monthly_price(
                pass_.stripe_product_id,
                new_price,
                metadata={"pass_id": pass_.id, "garage_id": pass_.garage_id},
            )
            new_price_id = price["id"]
            if old_price_id:
                self.gateway.archive_price(old_price_id)

        entry = self.history.append(
            pass_.id,
            old_price=old_price,
            new_price=new_price,
            old_stripe_price_id=old_price_id,
            new_stripe_price_id=new_price_id,
            changed_by=changed_by,
            change_reason=change_reason,
            effective_date=effective_date,
        )
        self.passes.set_price(pass_, new_price, new_price_id)
        self.session.commit()

        logger.info(
            f"Pass {pass_id} price changed {old_price} -> {new_price} "
            f"(stripe price {old_price_id} -> {new_price_id})"
        )

        result = {
            "pass_id": pass_id,
            "price_changed": True,
            "old_price": str(old_price),
            "new_price": str(new_price),
            "old_stripe_price_id": old_price_id,
            "new_stripe_price_id": new_price_id,
            "history_id": entry.id,
            "subscriptions_migrated": None,
            "migration": None,
        }

        if skip_migration:
            return result

        try:
            migration = self.migrate_all_subscriptions_for_pass(pass_id)
        except Exception as e:
            self.session.rollback()
            logger.error(
                f"Price changed for pass {pass_id} but migration aborted: {e}",
                exc_info=True,
            )
            result["subscriptions_migrated"] = False
            result["migration_error"] = str(e)
            return result

        result["migration"] = migration
        result["subscriptions_migrated"] = migration["failed"] == 0
        return result

    # ──────────────────────────────────────────────
    # Migration
    # ──────────────────────────────────────────────

    def migrate_subscription_to_current_price(self, subscription_id):
        """Move one subscription onto its pass's current price.

        Stripe issues a prorated adjustment for the rest of the period.
        Returns a result with status "migrated" or "skipped".
        """
        sub = self.subscriptions.require(subscription_id)
        if sub.is_canceled:
            raise InvalidStateError("Canceled subscriptions cannot be migrated")

        pass_ = self.passes.require(sub.pass_id)
        target = PriceAssignment(
            stripe_price_id=pass_.stripe_price_id or sub.stripe_price_id,
            monthly_amount=_money(pass_.monthly_amount),
        )
        before = _item_result(sub, target, "migrated")

        if not _needs_migration(sub, pass_):
            before["status"] = "skipped"
            before["reason"] = "Subscription is already on the current price"
            return before

        if pass_.stripe_price_id:
            if not sub.stripe_subscription_id:
                before["status"] = "skipped"
                before["reason"] = "Subscription has no Stripe subscription"
                logger.info(f"Skipping price migration for {sub.id}: no Stripe subscription")
                return before
            remote = self.gateway.retrieve_subscription(sub.stripe_subscription_id)
            item_id = self.gateway.get_subscription_item_id(remote)
            if not item_id:
                raise InvalidStateError(
                    f"Stripe subscription {sub.stripe_subscription_id} has no items"
                )
            self.gateway.replace_subscription_price(
                sub.stripe_subscription_id, item_id, pass_.stripe_price_id,
                prorate=True,
            )

        self.subscriptions.assign_price(sub, target)
        self.session.commit()

        logger.info(
            f"Migrated subscription {sub.id} to price {target.stripe_price_id} "
            f"({before['old_price']} -> {target.monthly_amount})"
        )
        return before

    def migrate_all_subscriptions_for_pass(self, pass_id):
        """Migrate every non-canceled subscription on a pass, one at a time.

        A failing subscription is rolled back, reported as "failed" with
        its error, and does not stop the rest.
        """
        self.passes.require(pass_id)
        sub_ids = [sub.id for sub in self.subscriptions.list_for_pass(pass_id)]

        results = []
        for sub_id in sub_ids:
            try:
                results.append(self.migrate_subscription_to_current_price(sub_id))
            except Exception as e:
                self.session.rollback()
                logger.warning(f"Price migration failed for subscription {sub_id}: {e}")
                results.append({
                    "subscription_id": sub_id,
                    "status": "failed",
                    "error": str(e),
                })

        summary = {
            "pass_id": pass_id,
            "total": len(results),
            "migrated": sum(1 for r in results if r["status"] == "migrated"),
            "skipped": sum(1 for r in results if r["status"] == "skipped"),
            "failed": sum(1 for r in results if r["status"] == "failed"),
            "results": results,
        }
        logger.info(
            f"Pass {pass_id} migration: {summary['migrated']} migrated, "
            f"{summary['skipped']} skipped, {summary['failed']} failed"
        )
        return summary

    def preview_price_migration(self, pass_id):
        """Dry run of migrate_all_subscriptions_for_pass. Read-only."""
        pass_ = self.passes.require(pass_id)
        new_price = _money(pass_.monthly_amount)

        rows = []
        for sub in self.subscriptions.list_for_pass(pass_id):
            current = _money(sub.monthly_amount)
            rows.append({
                "subscription_id": sub.id,
                "user_id": sub.user_id,
                "current_price": str(current),
                "new_price": str(new_price),
                "difference": str(new_price - current),
                "current_stripe_price_id": sub.stripe_price_id,
                "new_stripe_price_id": pass_.stripe_price_id,
                "will_migrate": _needs_migration(sub, pass_),
            })

        return {
            "pass_id": pass_id,
            "pass_price": str(new_price),
            "stripe_price_id": pass_.stripe_price_id,
            "total": len(rows),
            "will_migrate": sum(1 for r in rows if r["will_migrate"]),
            "subscriptions": rows,
        }

    # ──────────────────────────────────────────────
    # History
    # ──────────────────────────────────────────────

    def get_price_history(self, pass_id):
        self.passes.require(pass_id)
        return self.history.list_for_pass(pass_id)

    def get_price_at(self, pass_id, at):
        """Price in effect at `at`.

        The latest change on or before `at` gives its new price. Before the
        first recorded change the price was that change's old price. A pass
        with no history has only ever had its current price.
        """
        pass_ = self.passes.require(pass_id)
        entry = self.history.latest_at(pass_id, at)
        if entry is not None:
            return _money(entry.new_price)

        first = self.history.earliest(pass_id)
        if first is not None and first.old_price is not None:
            return _money(first.old_price)
        return _money(pass_.monthly_amount)


def _needs_migration(sub, pass_):
    if pass_.stripe_price_id:
        return sub.stripe_price_id != pass_.stripe_price_id
    # Pass not billed through Stripe: only the local amount can drift.
    return _money(sub.monthly_amount) != _money(pass_.monthly_amount)


def _item_result(sub, target, status):
    return {
        "subscription_id": sub.id,
        "user_id": sub.user_id,
        "status": status,
        "old_price": str(_money(sub.monthly_amount)),
        "new_price": str(target.monthly_amount),
        "old_stripe_price_id": sub.stripe_price_id,
        "new_stripe_price_id": target.stripe_price_id,
    }
