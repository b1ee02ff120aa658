"""
Factory Boy factories for dispute test data.

Usage:
    from disputes.tests.factories import DisputeFactory

    dispute = DisputeFactory()                    # PENDING, opened by the buyer
    dispute = DisputeFactory(order=order)         # parties copied from the order
    dispute = DisputeFactory(status=DisputeStatus.RESOLVED)
"""

import factory

from disputes.models import Dispute
from disputes.states import DisputeStatus, DisputeType
from orders.states import OrderStatus
from orders.tests.factories import PaidOrderFactory


class DisputeFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Dispute

    order = factory.SubFactory(PaidOrderFactory, status=OrderStatus.DELIVERED)
    buyer = factory.LazyAttribute(lambda o: o.order.buyer)
    seller = factory.LazyAttribute(lambda o: o.order.store.owner)
    opened_by = factory.LazyAttribute(lambda o: o.buyer)
    dispute_type = DisputeType.ITEM_NOT_RECEIVED
    description = factory.Faker("sentence")
    status = DisputeStatus.PENDING
