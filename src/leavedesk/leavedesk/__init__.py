"""LeaveDesk package.

Multi-tenant leave management organized by feature modules (organizations,
invitations, leave, schedules, billing, ...). Each feature has a thin Flask
controller, a service holding the rules and a MySQL repository behind a
Protocol. Billing keeps organization seats in step with Lemon Squeezy.
"""
