"""
Marshmallow schemas for API input validation and serialization.
"""
from marshmallow import Schema, fields, validate

from billing_engine.plans import PAID_PLANS


class BaseSchema(Schema):
    """Base schema with common config."""
    class Meta:
        ordered = True


# ── Billing ─────────────────────────────────────────────────

class CheckoutRequestSchema(BaseSchema):
    """Body of POST /billing/checkout."""
    plan = fields.Str(
        required=True,
        validate=validate.OneOf(PAID_PLANS, error='Plan must be one of: premium, pro.'),
    )


# ── Account ─────────────────────────────────────────────────

class EmailPreferencesSchema(BaseSchema):
    """Email opt-outs. All fields optional on update."""
    marketing_emails = fields.Bool()
    quota_warnings = fields.Bool()
    subscription_updates = fields.Bool()


class ProfileSchema(BaseSchema):
    id = fields.Str(dump_only=True)
    email = fields.Email(dump_only=True)
    full_name = fields.Str(dump_only=True)
    plan = fields.Method('get_plan')
    has_billing_account = fields.Method('get_has_billing_account')

    def get_plan(self, obj):
        return obj.plan.value if obj.plan else 'free'

    def get_has_billing_account(self, obj):
        return obj.stripe_customer_id is not None


class SubscriptionSchema(BaseSchema):
    stripe_subscription_id = fields.Str()
    plan = fields.Method('get_plan')
    status = fields.Method('get_status')
    current_period_start = fields.DateTime(format='iso')
    current_period_end = fields.DateTime(format='iso')
    cancel_at_period_end = fields.Bool()

    def get_plan(self, obj):
        return obj.plan.value

    def get_status(self, obj):
        return obj.status.value
