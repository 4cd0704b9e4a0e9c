#!/usr/bin/env python3
"""
批量导入脚本
============

从数据目录读取 ``user.json``、``video.json``、``danmu.json``，
重建数据库结构后并行导入，最后创建约束、索引与视图。
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Optional, Sequence

from danmuhub.datastore import DEFAULT_BUSY_TIMEOUT_MS, DataStore
from danmuhub.importer import (
    DEFAULT_FOLLOW_PARTITIONS,
    DEFAULT_IMPORT_HASH_METHOD,
    BulkImportError,
    ImportConfig,
    summarize,
)
from danmuhub.records import load_dataset


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="danmuhub 批量导入工具")
    parser.add_argument("dataset", help="包含 user.json / video.json / danmu.json 的目录")
    parser.add_argument(
        "--data-dir",
        default=os.getenv("DANMU_DATA_DIR", "data"),
        help="数据库所在目录（默认读取 DANMU_DATA_DIR，否则为 data）",
    )
    parser.add_argument(
        "--partitions",
        type=int,
        default=DEFAULT_FOLLOW_PARTITIONS,
        help=f"关注关系并行分区数（默认：{DEFAULT_FOLLOW_PARTITIONS}）",
    )
    parser.add_argument("--strict", action="store_true", help="任一任务失败时清空数据并以非零状态退出")
    parser.add_argument(
        "--hash-method",
        default=DEFAULT_IMPORT_HASH_METHOD,
        help=f"导入时的密码哈希算法（默认：{DEFAULT_IMPORT_HASH_METHOD}）",
    )
    parser.add_argument(
        "--busy-timeout",
        type=int,
        default=DEFAULT_BUSY_TIMEOUT_MS,
        help="SQLite 写锁等待时间（毫秒）",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="输出调试日志")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = ImportConfig(
        follow_partitions=args.partitions,
        strict=args.strict,
        password_hash_method=args.hash_method,
    )
    users, videos, danmus = load_dataset(Path(args.dataset))
    print(f"[读取] 用户 {len(users)}，视频 {len(videos)}，弹幕 {len(danmus)}")

    datastore = DataStore(Path(args.data_dir), busy_timeout_ms=args.busy_timeout)
    try:
        report = datastore.import_data(users, videos, danmus, config)
    except BulkImportError as exc:
        print(f"[失败] {exc}", file=sys.stderr)
        for name, message in sorted(exc.failures.items()):
            print(f"  ↳ {name}: {message}", file=sys.stderr)
        return 1
    finally:
        datastore.close()

    print(f"\n[报告] 导入耗时 {report.elapsed:.2f} 秒")
    print(f"{'表':<20}{'行数':>12}")
    print("-" * 32)
    for table, count in summarize(report):
        print(f"{table:<20}{count:>12}")
    if not report.ok:
        print("\n[警告] 以下任务失败：")
        for name, message in sorted(report.failures.items()):
            print(f"  ↳ {name}: {message}")
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
