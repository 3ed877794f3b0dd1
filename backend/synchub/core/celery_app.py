# beat 轮询 + 按 schedule 分发

from celery import Celery
from kombu import Exchange, Queue
from synchub.core.config import settings
from synchub.core.logging import configure_logging

configure_logging()


'''
初始化 Celery 应用/实例
   - Beat: 1 台（只负责投递 poll 任务）
   - Worker: 消费 orchestrator（poll / 单个 schedule）和 provider_io（真正打 provider 的同步）
'''
celery_app = Celery(
    "provider_sync_hub",
    broker=settings.broker_url,                 # 队列位置 (Redis)
    backend=settings.CELERY_RESULT_BACKEND,     # 结果存储，可为空
    include=[
        "synchub.orchestration.scheduler_tick",     # poller + run_schedule / retry / 手动同步
    ],
)


'''
  通用 Celery 配置
'''
celery_app.conf.update(
    timezone=settings.CELERY_TIMEZONE,
    enable_utc=True,                             # 内部还是存 UTC
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_track_started=True,
    broker_connection_retry_on_startup=True,
    # === 容错 ===
    worker_prefetch_multiplier=1,    # 一个 worker 一次只取一个任务
    task_acks_late=True,             # 执行完再确认；重投的任务由 schedule 租约挡住重复执行
    broker_heartbeat=30,
    broker_pool_limit=10,
)


'''
队列拆分
   - orchestrator：poll 任务，很轻，不能被慢 I/O 堵住
   - provider_io：单个 schedule 执行 / 手动同步，会打外部 API
'''
celery_app.conf.task_queues = (
    Queue("default", Exchange("default"), routing_key="default"),
    Queue("orchestrator", Exchange("orchestrator"), routing_key="orchestrator"),
    Queue("provider_io", Exchange("provider_io"), routing_key="provider_io"),
)
celery_app.conf.task_default_queue = "default"

celery_app.conf.task_routes = {
    "synchub.orchestration.scheduler_tick.poll_due_schedules": {"queue": "orchestrator"},
    "synchub.orchestration.scheduler_tick.poll_due_retries": {"queue": "orchestrator"},

    "synchub.orchestration.scheduler_tick.run_schedule": {"queue": "provider_io"},
    "synchub.orchestration.scheduler_tick.run_execution_retry": {"queue": "provider_io"},
    "synchub.orchestration.scheduler_tick.run_inventory_sync": {"queue": "provider_io"},
}


# poller 是唯一的触发源；schedule:{id} 缓存只用于观察
celery_app.conf.beat_schedule = {
    "poll-due-schedules": {
        "task": "synchub.orchestration.scheduler_tick.poll_due_schedules",
        "schedule": settings.SCHEDULE_POLL_INTERVAL_SEC,   # 秒
    },
    "poll-due-retries": {
        "task": "synchub.orchestration.scheduler_tick.poll_due_retries",
        "schedule": settings.SCHEDULE_POLL_INTERVAL_SEC,
    },
}
