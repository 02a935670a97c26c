"""Example script demonstrating a Favorants dashboard session."""

import asyncio
import logging
import os

from favorants import FavorantsApp
from favorants.filtering import FilterSpec, SortKey

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def main():
    """Sign in, open the dashboard and add a restaurant."""

    logger.info("=" * 60)
    logger.info("Favorants")
    logger.info("=" * 60)

    app = await FavorantsApp.connect()
    app.start()

    try:
        signed_in = await app.services.auth.sign_in(
            os.environ["FAVORANTS_EMAIL"],
            os.environ["FAVORANTS_PASSWORD"],
        )
        user = signed_in["user"]
        logger.info(f"Signed in as {user.email}")

        dashboard = await app.open_dashboard(user.id)
        logger.info(f"Loaded {dashboard.restaurants.total_count} restaurants")

        outcome = await dashboard.add_restaurant({"name": "Trattoria Example"}, to_try=True)
        if outcome.ok:
            logger.info(f"Added {outcome.value['name']}")
        else:
            logger.error(f"Could not add restaurant: {outcome.message}")

        dashboard.set_query(filters=FilterSpec(to_try=True), sort_key=SortKey.NAME)
        logger.info("-" * 60)
        for item in dashboard.restaurants.items:
            logger.info(f"  {item['name']}")

    finally:
        await app.stop()


if __name__ == "__main__":
    asyncio.run(main())
