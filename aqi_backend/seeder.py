# file: aqi_backend/seeder.py

import logging
import random
from datetime import datetime
from itertools import islice
from typing import Dict, Optional

from tqdm import tqdm

from aqi_backend.database import Store
from aqi_backend.models import CityProfile
from aqi_backend.synthetic import CITY_PROFILES, SyntheticGenerator


def seed_historical_data(
    store: Store,
    start: datetime,
    end: datetime,
    profiles: Optional[Dict[str, CityProfile]] = None,
    rng: Optional[random.Random] = None,
    batch_size: int = 1000,
    min_existing: int = 10000,
) -> int:
    """
    Backfill synthetic history for every profiled city, written in chunks of
    ``batch_size``. Does nothing when the store already holds ``min_existing``
    records. Returns the number of readings written.
    """
    existing = store.count()
    if existing >= min_existing:
        logging.info(f"Historical data already exists ({existing} records), skipping seeding")
        return 0

    profiles = CITY_PROFILES if profiles is None else profiles
    generator = SyntheticGenerator(rng if rng is not None else random.Random())
    logging.info(f"Seeding historical data for {len(profiles)} cities from {start} to {end}")

    total = 0
    for name, profile in tqdm(profiles.items(), desc="Seeding history", total=len(profiles)):
        readings = generator.generate_range(profile, start, end)
        while True:
            batch = list(islice(readings, batch_size))
            if not batch:
                break
            total += store.save_many(batch)
        logging.info(f"Seeded {name}; {total} records so far")

    logging.info(f"Generated {total} total historical records")
    return total
