import logging
from typing import Optional
from cinema_booking.services.side_effects import SideEffectDispatcher, side_effects


logger = logging.getLogger(__name__)


async def side_effect_worker(dispatcher: Optional[SideEffectDispatcher] = None):
    dispatcher = dispatcher or side_effects
    while True:
        event = await dispatcher.queue.get()
        try:
            # failures are retried or logged inside process()
            await dispatcher.process(event)
        finally:
            dispatcher.queue.task_done()
