"""Order domain -- state machine, persistence, transitions and read projection.

Provides SQLAlchemy models (Order, Customer, Quote, Driver), the status state
machine, repositories, OrderService for assignment and status updates with
post-commit side effects, and the role-filtered order projection.
"""
