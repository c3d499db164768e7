#!/usr/bin/env python3
"""
Example: How to use mobility-hub in your application

Runs against an in-memory transport with three demo providers, so no
network access is needed.
"""

import asyncio

from mobility_hub import (
    Api,
    CancellationToken,
    MiddlewareService,
    MobilityType,
    Mode,
    Option,
    ProviderRegistry,
)
from mobility_hub.logging_config import setup_logging
from mobility_hub.providers.mock import DEMO_SERVICES, create_demo_transport

STUTTGART = (48.7758, 9.1829)


def build_middleware() -> MiddlewareService:
    """Middleware over the demo providers."""
    registry = ProviderRegistry.from_services(DEMO_SERVICES, create_demo_transport())
    return MiddlewareService(registry)


def describe_option(option: Option) -> str:
    """One printable line per option; providers may leave the mode unset."""
    mode = option.mode.value if option.mode else "?"
    return f"  {option.provider_id:<11} {option.option_id:<7} {mode}"


async def example_1_select_providers():
    """Example 1: Select providers by capability"""
    print("\n📖 Example 1: Provider Selection")
    print("-" * 50)

    middleware = build_middleware()

    proxies = middleware.get_providers(
        modes={Mode.BICYCLE, Mode.CAR},
        mobility_types={MobilityType.FREE_RIDE},
        apis={Api.OPTIONS_API},
    )
    print(f"Bikes or cars, free-floating: {[p.id for p in proxies]}")

    proxies = middleware.get_providers(apis={Api.BOOKING_API})
    print(f"With booking API: {[p.id for p in proxies]}")


async def example_2_stream_options():
    """Example 2: Consume options as they arrive"""
    print("\n📖 Example 2: Streaming Options")
    print("-" * 50)

    middleware = build_middleware()

    async with middleware.get_options(STUTTGART, radius_meters=500) as stream:
        async for option in stream:
            print(describe_option(option))

    print(f"Stream ended: {stream.stop_reason}, {stream.emitted} options")


async def example_3_limit():
    """Example 3: Stop after the first few options"""
    print("\n📖 Example 3: Limit")
    print("-" * 50)

    middleware = build_middleware()

    options = await middleware.get_options(STUTTGART, limit=3).collect()
    print(f"First {len(options)}: {[o.option_id for o in options]}")


async def example_4_cancel():
    """Example 4: Cancel from another task"""
    print("\n📖 Example 4: Cancellation")
    print("-" * 50)

    middleware = build_middleware()
    token = CancellationToken()

    async def user_navigates_away():
        await asyncio.sleep(0.05)
        token.cancel()

    cancel_task = asyncio.create_task(user_navigates_away())
    options = await middleware.get_options(STUTTGART, token=token).collect()
    await cancel_task

    print(f"Received {len(options)} options before cancellation")


async def example_5_bookings():
    """Example 5: Current bookings from several providers"""
    print("\n📖 Example 5: Bookings")
    print("-" * 50)

    middleware = build_middleware()
    tokens = {"car-share": "user-token-1", "ride-hail": "user-token-2"}

    results = await middleware.get_bookings(
        ["car-share", "ride-hail", "bike-share"], tokens.get
    )

    for provider_id, booking in results.bookings.items():
        print(f"  ✅ {provider_id}: {booking.booking_id} ({booking.state})")
    for provider_id, failure in results.failures.items():
        print(f"  ❌ {provider_id}: {failure.kind.value} - {failure.message}")


async def main():
    """Run all examples"""
    setup_logging(level="WARNING")

    print("🚲 mobility-hub Usage Examples")
    print("=" * 50)

    examples = [
        example_1_select_providers,
        example_2_stream_options,
        example_3_limit,
        example_4_cancel,
        example_5_bookings,
    ]

    for example in examples:
        try:
            await example()
        except Exception as e:
            print(f"❌ Example failed: {e}")

    print("\n✨ Examples complete!")


if __name__ == "__main__":
    asyncio.run(main())
