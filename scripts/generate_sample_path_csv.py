from __future__ import annotations

import argparse
import math
import random
from datetime import datetime
from pathlib import Path

from zoneinfo import ZoneInfo

from path_claim.csv_io import write_samples
from path_claim.models import DEFAULT_TZ, LocationSample

# Meters per degree of latitude (spherical Earth, close enough for a demo track).
M_PER_DEG_LAT = 111_195.0


def _epoch_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def generate_loop(
    *,
    center_lat: float,
    center_lon: float,
    radius_m: float,
    laps: int,
    seed: int,
    start_ms: int,
    speed_mps: float = 2.8,
    step_s: float = 5.0,
) -> list[LocationSample]:
    """Generate a jittery running loop around a center, returning to the start.

    A few fixes carry bad accuracy and a few are stationary repeats so the
    recorder's filters have something to drop.
    """

    rng = random.Random(seed)
    circumference = 2.0 * math.pi * radius_m
    steps_per_lap = max(8, int(circumference / (speed_mps * step_s)))
    m_per_deg_lon = M_PER_DEG_LAT * math.cos(math.radians(center_lat))

    out: list[LocationSample] = []
    t = start_ms
    for i in range(steps_per_lap * laps + 1):
        angle = 2.0 * math.pi * (i % steps_per_lap) / steps_per_lap
        north = radius_m * math.cos(angle) + rng.gauss(0.0, 1.5)
        east = radius_m * math.sin(angle) + rng.gauss(0.0, 1.5)
        accuracy = rng.choice([3.0, 5.0, 5.0, 8.0, 12.0])
        if rng.random() < 0.05:
            # Urban-canyon fix: far off and flagged as inaccurate
            north += rng.uniform(-80.0, 80.0)
            accuracy = rng.choice([35.0, 60.0])
        out.append(
            LocationSample(
                lat=center_lat + (north - radius_m) / M_PER_DEG_LAT,
                lng=center_lon + east / m_per_deg_lon,
                timestamp_ms=t,
                accuracy_m=accuracy,
            )
        )
        if rng.random() < 0.05:
            # Stationary repeat a second later
            t += 1000
            last = out[-1]
            out.append(LocationSample(last.lat, last.lng, t, last.accuracy_m))
        t += int(step_s * 1000 * rng.uniform(0.8, 1.2))
    return out


def main() -> int:
    p = argparse.ArgumentParser(description="Generate a fake loop run CSV for demo/testing (privacy-safe).")
    p.add_argument("--out", type=str, default="sample_data/Path.csv", help="Output CSV path")
    p.add_argument("--center-lat", type=float, default=47.6062, help="Loop start latitude")
    p.add_argument("--center-lon", type=float, default=-122.3321, help="Loop start longitude")
    p.add_argument("--radius-m", type=float, default=120.0, help="Loop radius in meters")
    p.add_argument("--laps", type=int, default=1, help="Number of laps")
    p.add_argument("--seed", type=int, default=42, help="Random seed (reproducible)")
    p.add_argument(
        "--start",
        type=str,
        default="2025-01-01 08:00:00",
        help=f"Start local time in {DEFAULT_TZ}, e.g. '2025-01-01 08:00:00'",
    )
    args = p.parse_args()

    start_local = datetime.fromisoformat(args.start).replace(tzinfo=ZoneInfo(DEFAULT_TZ))
    samples = generate_loop(
        center_lat=args.center_lat,
        center_lon=args.center_lon,
        radius_m=args.radius_m,
        laps=args.laps,
        seed=args.seed,
        start_ms=_epoch_ms(start_local),
    )
    out_path = Path(args.out)
    n = write_samples(out_path, samples)

    print(f"Generated: {out_path} (rows={n}, seed={args.seed})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
