# 数据库连接池生成器
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from recsys.core.config import settings

# pool_recycle=3600: MySQL 默认会断开空闲 8 小时的连接，这里设置每 1 小时回收重连
# pool_pre_ping=True: 每次从池子里拿连接前，先 ping 一下数据库，确保连接是活的
engine = create_engine(
    settings.database_url,
    pool_recycle=3600,
    pool_pre_ping=True,
)

# 每次有新请求进来，deps.py 就会调用它产生一个新的数据库会话
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# 所有的 Model 都要继承这个类
Base = declarative_base()
