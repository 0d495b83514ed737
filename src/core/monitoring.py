"""
Monitoring e metriche per le chiamate al servizio remoto e la riconciliazione
"""
import logging
from typing import Dict, Any, Optional
from dataclasses import dataclass, field
from collections import defaultdict, deque
from datetime import datetime, timedelta

logger = logging.getLogger(__name__)

@dataclass
class MetricData:
    """Struttura per i dati delle metriche"""
    name: str
    value: float
    timestamp: datetime
    tags: Dict[str, str] = field(default_factory=dict)

class MetricsCollector:
    """Raccoglitore di metriche"""

    def __init__(self, max_history: int = 1000):
        self.max_history = max_history
        self.metrics: Dict[str, deque] = defaultdict(lambda: deque(maxlen=max_history))
        self.counters: Dict[str, int] = defaultdict(int)
        self.timers: Dict[str, float] = {}
        self.start_time = datetime.now()

    def increment_counter(self, name: str, value: int = 1, tags: Dict[str, str] = None):
        """Incrementa un contatore"""
        self.counters[name] += value
        self._record_metric(name, value, tags)
        logger.debug(f"Counter {name} incremented by {value}")

    def record_timer(self, name: str, duration: float, tags: Dict[str, str] = None):
        """Registra un timer"""
        self.timers[name] = duration
        self._record_metric(f"{name}_duration", duration, tags)
        logger.debug(f"Timer {name} recorded: {duration:.3f}s")

    def _record_metric(self, name: str, value: float, tags: Dict[str, str] = None):
        metric = MetricData(
            name=name,
            value=value,
            timestamp=datetime.now(),
            tags=tags or {}
        )
        self.metrics[name].append(metric)

    def get_counter(self, name: str) -> int:
        """Ottiene il valore di un contatore"""
        return self.counters.get(name, 0)

    def get_timer(self, name: str) -> Optional[float]:
        """Ottiene il valore di un timer"""
        return self.timers.get(name)

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Ottiene un riassunto delle metriche"""
        uptime = (datetime.now() - self.start_time).total_seconds()

        return {
            "uptime_seconds": uptime,
            "uptime_human": str(timedelta(seconds=int(uptime))),
            "counters": dict(self.counters),
            "timers": dict(self.timers),
            "total_metrics": sum(len(metrics) for metrics in self.metrics.values()),
            "metric_names": list(self.metrics.keys())
        }

class ErrorTracker:
    """Tracker per errori e eccezioni"""

    def __init__(self, max_history: int = 1000):
        self.error_counts: Dict[str, int] = defaultdict(int)
        self.error_history: deque = deque(maxlen=max_history)
        self.last_error: Optional[Dict[str, Any]] = None

    def record_error(self, error_type: str, message: str, details: Dict[str, Any] = None):
        """Registra un errore"""
        self.error_counts[error_type] += 1

        error_record = {
            "type": error_type,
            "message": message,
            "details": details or {},
            "timestamp": datetime.now(),
            "count": self.error_counts[error_type]
        }

        self.error_history.append(error_record)
        self.last_error = error_record

        logger.warning(f"Error tracked: {error_type} - {message}")

    def get_error_summary(self) -> Dict[str, Any]:
        """Ottiene un riassunto degli errori"""
        return {
            "total_errors": sum(self.error_counts.values()),
            "error_counts": dict(self.error_counts),
            "last_error": self.last_error,
            "recent_errors": list(self.error_history)[-10:]  # Ultimi 10 errori
        }

class ShipmentMonitor:
    """Monitor delle chiamate al servizio remoto e degli esiti di riconciliazione"""

    def __init__(self):
        self.metrics = MetricsCollector()
        self.error_tracker = ErrorTracker()

    def record_api_call(self, method: str, path: str, duration: float, status_code: Optional[int] = None):
        """Registra una chiamata al servizio remoto"""
        self.metrics.increment_counter("api_calls", tags={"method": method, "path": path})
        self.metrics.record_timer("api_call", duration, tags={"method": method})

        if status_code is None or status_code >= 400:
            self.metrics.increment_counter("api_errors", tags={"method": method})

    def record_transport_error(self, operation: str, message: str):
        """Registra un errore di trasporto (rete, timeout, non-2xx)"""
        self.metrics.increment_counter("transport_errors", tags={"operation": operation})
        self.error_tracker.record_error("TRANSPORT_ERROR", message, {"operation": operation})

    def record_save(self, shipment_id: Any):
        self.metrics.increment_counter("shipment_saves", tags={"shipment_id": str(shipment_id)})

    def record_reconciliation(self, shipment_id: Any, discrepancy: bool):
        """Registra l'esito di una riconciliazione"""
        self.metrics.increment_counter("reconciliations")
        if discrepancy:
            self.metrics.increment_counter(
                "reconciliation_discrepancies", tags={"shipment_id": str(shipment_id)}
            )

    def get_summary(self) -> Dict[str, Any]:
        """Ottiene un riassunto di chiamate, errori e riconciliazioni"""
        return {
            "api_calls": self.metrics.get_counter("api_calls"),
            "api_errors": self.metrics.get_counter("api_errors"),
            "shipment_saves": self.metrics.get_counter("shipment_saves"),
            "reconciliations": self.metrics.get_counter("reconciliations"),
            "reconciliation_discrepancies": self.metrics.get_counter("reconciliation_discrepancies"),
            "metrics": self.metrics.get_metrics_summary(),
            "errors": self.error_tracker.get_error_summary()
        }

# Istanza globale del monitor
shipment_monitor = ShipmentMonitor()

def get_shipment_monitor() -> ShipmentMonitor:
    """Ottiene l'istanza globale del monitor"""
    return shipment_monitor
