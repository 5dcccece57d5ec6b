"""推荐模块建表 + 示例实验分组脚本。

用法：
python -m scripts.init_db            # 建表
python -m scripts.init_db --seed     # 建表并创建示例分组（按名称幂等）

注意：需要先在 .env 配好 DB_USER/DB_PASSWORD/DB_SERVER/DB_PORT/DB_NAME（或 DATABASE_URL）。
"""

import argparse
import asyncio

from loguru import logger

from recsys.cache.tier import NullCacheTier
from recsys.core.config import settings
from recsys.core.database import Base, SessionLocal, engine
from recsys.data import sql_models  # noqa: F401  确保模型注册到 Base.metadata
from recsys.data.sql_store import SqlExperimentStore
from recsys.experiments.manager import ExperimentManager


async def seed() -> None:
    manager = ExperimentManager(
        SqlExperimentStore(SessionLocal),
        NullCacheTier(),
        experiment_key=settings.AB_EXPERIMENT_KEY,
    )
    created = await manager.seed_example_variants()
    logger.info(f"[init_db] 新建示例分组 {len(created)} 个: {[v.name for v in created]}")


def main() -> None:
    parser = argparse.ArgumentParser(description="推荐模块建表")
    parser.add_argument("--seed", action="store_true", help="创建示例实验分组")
    args = parser.parse_args()

    Base.metadata.create_all(bind=engine)
    logger.info("[init_db] tables ensured")
    if args.seed:
        asyncio.run(seed())


if __name__ == "__main__":
    main()
