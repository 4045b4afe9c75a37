"""
Stripe-facing subscription operations: customers, checkout and billing portal.
State changes resulting from these flows arrive later through the webhook.
"""
import stripe
from flask import current_app

from billing_engine.errors import BillingRequestError
from billing_engine.extensions import db
from billing_engine.models.profile import UserProfile
from billing_engine.plans import PAID_PLANS, price_id_for_plan


class SubscriptionService:
    """Service for creating Stripe customers and hosted billing sessions."""

    @staticmethod
    def get_or_create_stripe_customer(profile: UserProfile) -> str:
        """Get or create a Stripe customer for the user.

        Args:
            profile: User to get/create customer for

        Returns:
            Stripe customer ID
        """
        if profile.stripe_customer_id:
            return profile.stripe_customer_id

        customer = stripe.Customer.create(
            email=profile.email,
            name=profile.full_name,
            metadata={'user_id': str(profile.id)},
        )

        profile.stripe_customer_id = customer.id
        db.session.commit()
        current_app.logger.info(f'Stripe customer {customer.id} created for user {profile.id}')
        return customer.id

    @staticmethod
    def create_checkout_session(profile: UserProfile, plan: str):
        """Create a Stripe Checkout Session for a paid plan.

        The user id and plan travel as metadata on both the session and the
        subscription, which is how the webhook maps them back.

        Args:
            profile: User requesting the upgrade
            plan: 'premium' or 'pro'

        Returns:
            The Stripe checkout session (id, url)
        """
        if plan not in PAID_PLANS:
            raise BillingRequestError('invalid_plan', 'Plan must be one of: premium, pro.', 400)

        price_id = price_id_for_plan(plan)
        if not price_id:
            raise BillingRequestError('plan_unavailable', f'The {plan} plan is not available.', 503)

        customer_id = SubscriptionService.get_or_create_stripe_customer(profile)
        app_url = current_app.config['APP_URL']
        metadata = {'user_id': str(profile.id), 'plan': plan}

        return stripe.checkout.Session.create(
            customer=customer_id,
            client_reference_id=str(profile.id),
            line_items=[{
                'price': price_id,
                'quantity': 1,
            }],
            mode='subscription',
            success_url=f'{app_url}/billing/success?session_id={{CHECKOUT_SESSION_ID}}',
            cancel_url=f'{app_url}/pricing',
            metadata=metadata,
            subscription_data={'metadata': metadata},
        )

    @staticmethod
    def create_portal_session(profile: UserProfile) -> str:
        """Create a Stripe Billing Portal session.

        Args:
            profile: User requesting portal access

        Returns:
            Portal session URL to redirect to
        """
        if not profile.stripe_customer_id:
            raise BillingRequestError(
                'no_billing_account',
                'No Stripe customer found. Please subscribe to a plan first.',
                404,
                {'plan': profile.plan.value},
            )
        if not profile.is_paid:
            raise BillingRequestError(
                'plan_required',
                'Customer portal is only available for Premium and Pro subscribers.',
                403,
                {'plan': profile.plan.value},
            )

        try:
            session = stripe.billing_portal.Session.create(
                customer=profile.stripe_customer_id,
                return_url=f"{current_app.config['APP_URL']}/dashboard",
            )
        except stripe.InvalidRequestError as e:
            current_app.logger.warning(f'Portal refused customer {profile.stripe_customer_id}: {e}')
            raise BillingRequestError(
                'invalid_billing_account',
                'Invalid Stripe customer. Please contact support.',
                404,
            )
        return session.url
