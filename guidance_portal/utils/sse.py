from guidance_portal.services.event_stream import Subscription

async def event_source(subscription: Subscription):
    """Render a subscription as Server-Sent Events; closes it when the client goes away."""
    async with subscription:
        async for event in subscription:
            yield f"event: {event.event}\ndata: {event.model_dump_json()}\n\n"
