"""Build transports and reporters from configuration."""
import logging

from dogreporter.config import Config, TransportConfig
from dogreporter.naming import DefaultMetricNameFormatter
from dogreporter.registry import MetricRegistry
from dogreporter.reporter import DatadogReporter
from dogreporter.units import TimeUnit

logger = logging.getLogger(__name__)


def create_transport(config: TransportConfig):
    """Factory function to create the configured transport."""
    if config.type == "http":
        from dogreporter.transport import HttpTransport

        transport = HttpTransport(
            api_key=config.http.api_key,
            url=config.http.url,
            timeout_s=config.http.timeout_s,
        )
        logger.info(f"HTTP transport initialized for {config.http.url}")
    elif config.type == "prometheus":
        from dogreporter.prom_transport import PrometheusTransport

        transport = PrometheusTransport(
            prefix=config.prometheus.prefix,
            port=config.prometheus.port,
            bind_address=config.prometheus.bind_address,
        )
        logger.info("Prometheus transport initialized")
    elif config.type == "otel":
        from dogreporter.otel_transport import OTELTransport

        transport = OTELTransport(
            endpoint=config.otel.endpoint,
            insecure=config.otel.insecure,
            prefix=config.otel.prefix,
            export_interval_s=config.otel.export_interval_s,
            headers=config.otel.headers,
            resource=config.otel.resource,
        )
    else:
        raise ValueError(f"Unknown transport type: {config.type}")
    return transport


def create_reporter(config: Config, registry: MetricRegistry, transport=None) -> DatadogReporter:
    """Assemble a reporter for ``registry`` from validated configuration."""
    reporter_config = config.reporter
    builder = (
        DatadogReporter.for_registry(registry)
        .with_transport(transport if transport is not None else create_transport(config.transport))
        .with_tags(reporter_config.tags)
        .with_prefix(reporter_config.prefix)
        .convert_rates_to(TimeUnit.parse(reporter_config.rate_unit))
        .convert_durations_to(TimeUnit.parse(reporter_config.duration_unit))
        .with_name_formatter(DefaultMetricNameFormatter(reporter_config.name_separator))
    )

    builder.with_expansions(reporter_config.active_expansions())

    if reporter_config.use_ec2_host:
        builder.with_ec2_host()
    elif reporter_config.host:
        builder.with_host(reporter_config.host)

    if reporter_config.self_metrics:
        builder.with_self_metrics()

    reporter = builder.build()
    logger.info(
        f"Reporter initialized: host={reporter.host}, prefix={reporter_config.prefix}, "
        f"tags={reporter_config.tags}"
    )
    return reporter
