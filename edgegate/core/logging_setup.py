import logging
from edgegate.core.trace import trace_id_var


class TraceLogFilter(logging.Filter):
    def filter(self, record):
        record.trace_id = trace_id_var.get() or "-"
        return True


def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] [trace_id=%(trace_id)s] %(name)s: %(message)s"
    )
    # handler level so records from child loggers get a trace_id too
    for handler in logging.getLogger().handlers:
        handler.addFilter(TraceLogFilter())
