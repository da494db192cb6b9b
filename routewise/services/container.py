"""
Service wiring

Every service gets its store, notifier and settings at construction time.
The app lifespan builds one container and routes reach it through
request.app.state.
"""
from dataclasses import dataclass
from typing import Dict, Optional

from fastapi import Request

from routewise.config.settings import Settings
from routewise.database.db_operations import DocumentStore
from routewise.services.booking_lifecycle import BookingLifecycleManager
from routewise.services.capacity_resolver import CapacityResolver
from routewise.services.notification_service import NotificationSender
from routewise.services.payment_service import OPayGateway, PaymentGateway, PaymentService, PaystackGateway
from routewise.services.rescheduler import Rescheduler
from routewise.services.trip_allocator import TripAllocator
from routewise.services.trip_confirmation import TripConfirmationMonitor
from routewise.services.trip_sync import TripPassengerSynchronizer


@dataclass
class ServiceContainer:
    settings: Settings
    store: DocumentStore
    notifier: NotificationSender
    resolver: CapacityResolver
    monitor: TripConfirmationMonitor
    allocator: TripAllocator
    synchronizer: TripPassengerSynchronizer
    lifecycle: BookingLifecycleManager
    rescheduler: Rescheduler
    payments: PaymentService


def build_container(
    settings: Settings,
    store: DocumentStore,
    notifier: Optional[NotificationSender] = None,
    gateways: Optional[Dict[str, PaymentGateway]] = None,
) -> ServiceContainer:
    notifier = notifier or NotificationSender(settings)
    if gateways is None:
        gateways = {"paystack": PaystackGateway(settings), "opay": OPayGateway(settings)}

    resolver = CapacityResolver(store)
    monitor = TripConfirmationMonitor(store, notifier, settings)
    allocator = TripAllocator(store, resolver, monitor, notifier)
    synchronizer = TripPassengerSynchronizer(store, settings)
    lifecycle = BookingLifecycleManager(store, allocator, synchronizer, notifier, settings)
    return ServiceContainer(
        settings=settings,
        store=store,
        notifier=notifier,
        resolver=resolver,
        monitor=monitor,
        allocator=allocator,
        synchronizer=synchronizer,
        lifecycle=lifecycle,
        rescheduler=Rescheduler(store, allocator, notifier, settings),
        payments=PaymentService(store, lifecycle, resolver, notifier, gateways, settings),
    )


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container
