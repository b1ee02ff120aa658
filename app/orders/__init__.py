"""
Orders app: the canonical lifecycle of a marketplace purchase.

Modules:
    states: OrderStatus, PaymentMethod, PaymentStatus, SettlementMode
    models: Store, Product, Order, OrderItem, OrderStatusHistory
    capabilities: Role x Action table consumed by every settlement operation
    services: OrderService (checkout, points redemption, transitions)
"""
