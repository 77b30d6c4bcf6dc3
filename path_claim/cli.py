"""Command-line interface for path_claim.

Run:
    python -m path_claim replay --csv Path.csv --synthesize
    python -m path_claim territories
    python -m path_claim nearby --lat 47.6062 --lon -122.3321
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict

from path_claim.csv_io import load_samples
from path_claim.errors import IneligibleSession, TerritoryConflict
from path_claim.events import EventBus, EventLog, LapRecorded
from path_claim.geo import coord_key, envelope
from path_claim.landmarks import NominatimConfig, NominatimLandmarkResolver
from path_claim.models import DEFAULT_TZ, GeoPoint, Territory, TerritoryStatus
from path_claim.proximity import ProximityMonitor, ProximityParams
from path_claim.recorder import RecorderParams, SessionRecorder
from path_claim.registry import TerritoryRegistry
from path_claim.storage import JsonDiskCache, JsonRecordStore, territory_to_record
from path_claim.synthesizer import TerritorySynthesizer
from path_claim.timeutils import format_duration_ms, format_epoch_ms

logger = logging.getLogger(__name__)


class _ReplayClock:
    """Clock that reads the timestamp of the sample currently being replayed."""

    def __init__(self, start_ms: int) -> None:
        self.now_ms = start_ms

    def __call__(self) -> int:
        return self.now_ms


def _cmd_replay(args: argparse.Namespace) -> int:
    samples, summary = load_samples(args.csv)
    print(f"读取采样：total_rows={summary.rows_total}, parsed={summary.rows_parsed}, skipped={summary.rows_skipped}")
    if not samples:
        print("CSV中没有可用的采样点", file=sys.stderr)
        return 1

    params = RecorderParams(
        max_accuracy_m=args.max_accuracy_m,
        min_movement_m=args.min_movement_m,
        smoothing_factor=args.smoothing_factor,
        min_territory_distance_m=args.min_territory_distance_m,
        max_loop_deviation_m=args.max_loop_deviation_m,
    )
    bus = EventBus()
    log = EventLog(bus)
    sessions = JsonRecordStore(args.sessions)
    clock = _ReplayClock(samples[0].timestamp_ms)
    recorder = SessionRecorder(bus=bus, store=sessions, params=params, clock=clock)

    recorder.start_session(samples[0])
    lap_every = int(args.lap_every_m) if args.lap_every_m else 0
    next_lap_at = float(lap_every)
    for s in samples[1:]:
        clock.now_ms = s.timestamp_ms
        recorder.ingest_sample(s)
        stats = recorder.current_stats()
        if lap_every and stats is not None and stats.distance_m >= next_lap_at:
            recorder.record_lap()
            next_lap_at += lap_every
    session = recorder.complete_session()
    sessions.flush()
    if session is None:
        return 1

    print("### 记录")
    print(f"session={session.id}")
    print(
        f"accepted={len(session.samples)}/{len(samples)}, distance={session.total_distance_m:.1f}m, "
        f"duration={format_duration_ms(session.total_duration_ms)}, "
        f"avg_speed={session.avg_speed_mps:.2f}m/s, max_speed={session.max_speed_mps:.2f}m/s"
    )
    print(f"start={format_epoch_ms(session.start_time_ms, args.tz)}, end={format_epoch_ms(session.end_time_ms, args.tz)}")
    for event in log.of(LapRecorded):
        lap = event.lap
        print(f"lap {lap.lap_number}: {lap.distance_m:.1f}m in {format_duration_ms(lap.duration_ms)}")
    print(f"territory_eligible={session.territory_eligible}, key={session.uniqueness_key}")

    if not args.synthesize:
        return 0

    territory_store = JsonRecordStore(args.territories)
    registry = TerritoryRegistry(territory_store)
    registry.load()
    cache: JsonDiskCache | None = None
    resolver: NominatimLandmarkResolver | None = None
    if args.landmarks:
        cache = JsonDiskCache(args.landmark_cache)
        # 立刻创建缓存文件（避免长时间运行看不到任何文件产出）
        cache.ensure_persistent_files()
        resolver = NominatimLandmarkResolver(
            NominatimConfig(accept_language=args.landmark_lang, user_agent=args.user_agent),
            cache=cache,
        )
    synthesizer = TerritorySynthesizer(registry, resolver=resolver, bus=bus)
    try:
        territory = synthesizer.synthesize(session)
    except (IneligibleSession, TerritoryConflict) as exc:
        print(f"无法生成领地：{exc}", file=sys.stderr)
        return 2
    finally:
        if cache is not None:
            cache.flush()
    territory_store.flush()

    print()
    print("### 领地")
    m = territory.metadata
    print(f"id={territory.id}, name={m.name}")
    print(f"difficulty={m.difficulty}, rarity={m.rarity.value}, reward={m.estimated_reward}")
    print(f"landmarks={', '.join(m.landmarks)}")
    print(m.description)
    return 0


def _territory_row(t: Territory) -> dict[str, object]:
    return {
        "id": t.id,
        "name": t.metadata.name,
        "status": t.status.value,
        "rarity": t.metadata.rarity.value,
        "difficulty": t.metadata.difficulty,
        "reward": t.metadata.estimated_reward,
        "key": t.uniqueness_key,
        "owner": t.owner or "",
    }


def _cmd_territories(args: argparse.Namespace) -> int:
    registry = TerritoryRegistry(JsonRecordStore(args.territories))
    n = registry.load()
    territories = registry.snapshot()
    if args.status:
        territories = [t for t in territories if t.status.value == args.status]
    territories.sort(key=lambda t: (-t.metadata.difficulty, t.id))

    if args.json:
        print(json.dumps([territory_to_record(t) for t in territories], ensure_ascii=False, indent=2))
        return 0

    print(f"共 {n} 个领地，显示 {len(territories)} 个")
    for t in territories:
        row = _territory_row(t)
        claimed = format_epoch_ms(t.claimed_at_ms, args.tz)
        print(
            f"{row['id']}  {row['status']:<12} {row['rarity']:<9} difficulty={row['difficulty']:<3} "
            f"reward={row['reward']:<4} key={row['key']}  claimed_at={claimed}  {row['name']}"
        )
    return 0


def _cmd_nearby(args: argparse.Namespace) -> int:
    registry = TerritoryRegistry(JsonRecordStore(args.territories))
    registry.load()
    monitor = ProximityMonitor(params=ProximityParams(threshold_m=args.threshold_m))
    nearby = monitor.update_nearby(GeoPoint(lat=args.lat, lng=args.lon), registry.snapshot())
    if not nearby:
        print(f"{args.threshold_m:.0f}m 内没有已占领的领地")
        return 0
    for n in nearby:
        print(f"{n.distance_m:7.1f}m  {n.direction:<2}  {n.territory.id}  {n.territory.metadata.name}")
    return 0


def _cmd_preview(args: argparse.Namespace) -> int:
    samples, _ = load_samples(args.csv)
    if not samples:
        print("CSV中没有可用的采样点", file=sys.stderr)
        return 1
    registry = TerritoryRegistry(JsonRecordStore(args.territories))
    registry.load()
    synthesizer = TerritorySynthesizer(registry)
    bounds = envelope(samples)
    preview = synthesizer.preview(bounds, coord_key(bounds.center.lat, bounds.center.lng, args.precision))
    payload = {
        "bounds": asdict(bounds),
        "uniqueness_key": preview.uniqueness_key,
        "conflicting": [t.id for t in preview.conflicting],
        "available_on_ledger": preview.available_on_ledger,
        "claimability": preview.claimability,
    }
    print(json.dumps(payload, ensure_ascii=False, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser."""

    p = argparse.ArgumentParser(prog="path_claim")
    p.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="日志级别",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    p_rep = sub.add_parser("replay", help="把导出的轨迹CSV回放为一次记录，并可生成领地")
    p_rep.add_argument("--csv", type=str, default="Path.csv", help="输入CSV路径")
    p_rep.add_argument("--tz", type=str, default=DEFAULT_TZ, help="时区（IANA），用于显示")
    p_rep.add_argument("--sessions", type=str, default="sessions.json", help="记录存储文件")
    p_rep.add_argument("--territories", type=str, default="territories.json", help="领地存储文件")
    p_rep.add_argument("--synthesize", action="store_true", help="满足条件时生成领地")
    p_rep.add_argument("--max-accuracy-m", type=float, default=20.0, help="精度阈值（米），更差的采样被丢弃")
    p_rep.add_argument("--min-movement-m", type=float, default=5.0, help="最小移动距离（米），抑制静止抖动")
    p_rep.add_argument(
        "--smoothing-factor",
        type=float,
        default=0.3,
        help="指数平滑系数（0-1]，1 表示不平滑",
    )
    p_rep.add_argument("--min-territory-distance-m", type=float, default=500.0, help="生成领地的最短距离（米）")
    p_rep.add_argument("--max-loop-deviation-m", type=float, default=50.0, help="起终点最大偏差（米）")
    p_rep.add_argument("--lap-every-m", type=float, default=None, help="每隔多少米自动记一圈")
    p_rep.add_argument("--landmarks", action="store_true", help="启用逆地理编码获取地标名称")
    p_rep.add_argument("--landmark-cache", type=str, default="landmark_cache.json", help="地标缓存文件")
    p_rep.add_argument("--landmark-lang", type=str, default="en", help="地标语言（如 zh-CN/en）")
    p_rep.add_argument(
        "--user-agent",
        type=str,
        default="path-claim/0.1.0 (landmarks; set your own UA)",
        help="HTTP User-Agent（建议填你自己的标识，避免被服务方屏蔽）",
    )
    p_rep.set_defaults(func=_cmd_replay)

    p_ter = sub.add_parser("territories", help="列出已保存的领地")
    p_ter.add_argument("--territories", type=str, default="territories.json", help="领地存储文件")
    p_ter.add_argument("--tz", type=str, default=DEFAULT_TZ, help="时区（IANA）")
    p_ter.add_argument(
        "--status",
        type=str,
        default=None,
        choices=[s.value for s in TerritoryStatus],
        help="仅显示该状态的领地",
    )
    p_ter.add_argument("--json", action="store_true", help="输出JSON（便于后处理）")
    p_ter.set_defaults(func=_cmd_territories)

    p_near = sub.add_parser("nearby", help="查询某位置附近已占领的领地")
    p_near.add_argument("--territories", type=str, default="territories.json", help="领地存储文件")
    p_near.add_argument("--lat", type=float, required=True, help="当前位置纬度")
    p_near.add_argument("--lon", type=float, required=True, help="当前位置经度")
    p_near.add_argument("--threshold-m", type=float, default=100.0, help="距离阈值（米）")
    p_near.set_defaults(func=_cmd_nearby)

    p_pre = sub.add_parser("preview", help="预览一条轨迹的占领可能性（不生成领地）")
    p_pre.add_argument("--csv", type=str, default="Path.csv", help="输入CSV路径")
    p_pre.add_argument("--territories", type=str, default="territories.json", help="领地存储文件")
    p_pre.add_argument("--precision", type=int, default=4, help="领地键的坐标小数位数")
    p_pre.set_defaults(func=_cmd_preview)

    return p


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint."""

    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
