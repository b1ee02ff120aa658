"""
Authentication app: email-identified users.

Users act as buyers (they place orders), sellers (they own a store) or
administrators (staff flag). Roles are derived per order by
orders.capabilities, not stored on the user.
"""
