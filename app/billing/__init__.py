"""
Billing app for marketplace subscriptions.

Three systems of record are kept in agreement here:
- Stripe: authoritative for money and subscription status
- the entitlement ledger (Subscription rows): authoritative for access
  and program capacity
- the coaching chat channel: a best-effort side effect (messaging app)

Flow:
    CheckoutService.initiate_checkout
        → Stripe hosted checkout
        → signed webhook → WebhookReconciler
        → EntitlementLedger + ProgramRegistry (one transaction)
        → ChannelProvisioner (after commit, failures logged only)

Related apps:
    - programs: capacity counter
    - messaging: chat channel provisioning
"""
