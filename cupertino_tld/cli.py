"""
CLI entry point for cupertino-tld
"""

import json
import os
import sys

import click

from cupertino_tld.logging_utils import setup_structured_logging

# Configure structured logging
# Use JSON format for production, human-readable for development
JSON_LOGS = os.getenv("JSON_LOGS", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE") or None

setup_structured_logging(
    level=LOG_LEVEL,
    json_format=JSON_LOGS,
    output_file=LOG_FILE,
)


def _parse_point(value: str) -> tuple:
    """'30,30' -> (30, 30)"""
    try:
        x, y = (int(part.strip()) for part in value.split(","))
    except ValueError:
        raise click.BadParameter(f"expected 'x,y', got {value!r}")
    return x, y


@click.group()
def main():
    """Cupertino TLD - Traffic Light Detector with MJPEG streaming"""
    pass


@main.command()
@click.option("--source", default="0", help="Camera index, device path, RTSP URI or video file")
@click.option("--width", type=int, default=1280, help="Capture width (cameras only)")
@click.option("--height", type=int, default=720, help="Capture height (cameras only)")
@click.option(
    "--config-path",
    envvar="TLD_CONFIG_PATH",
    default="/usr/local/packages/tld/html/config.json",
    help="Persisted lamp configuration document (env: TLD_CONFIG_PATH)",
)
@click.option("--host", default="127.0.0.1", help="HTTP bind address")
@click.option("--port", type=int, default=8080, help="HTTP bind port")
@click.option("--api-prefix", default="/local/tld/api", help="Path prefix of every route")
@click.option("--jpeg-quality", type=click.IntRange(1, 100), default=75, help="JPEG quality (1-100)")
@click.option("--frame-interval", type=float, default=0.033, help="Pause between stream frames (seconds)")
@click.option(
    "--no-frame-retry-interval",
    type=float,
    default=0.01,
    help="Pause before re-checking when no frame has been published yet (seconds)",
)
@click.option("--marker-center", default="30,30", help="State marker position 'x,y'")
@click.option("--marker-radius", type=int, default=20, help="State marker radius in pixels")
@click.option(
    "--annotate-regions/--no-annotate-regions",
    default=True,
    help="Outline master region and lamp disks on the stream",
)
@click.option("--drain-timeout", type=float, default=2.0, help="Seconds to drain connections on shutdown")
@click.option(
    "--enable-mqtt",
    is_flag=True,
    default=False,
    help="Publish lamp state changes to MQTT",
)
@click.option("--mqtt-host", default="localhost", help="MQTT broker host")
@click.option("--mqtt-port", type=int, default=1883, help="MQTT broker port")
@click.option("--mqtt-username", envvar="MQTT_USERNAME", default=None, help="MQTT username (env: MQTT_USERNAME)")
@click.option("--mqtt-password", envvar="MQTT_PASSWORD", default=None, help="MQTT password (env: MQTT_PASSWORD)")
@click.option("--state-topic", default="tld/state", help="MQTT topic prefix for lamp state events")
@click.option(
    "--json-logs",
    is_flag=True,
    default=False,
    help="Output logs in JSON format for log aggregation (Elasticsearch, Loki, etc.)",
)
@click.option(
    "--instance-id",
    default=None,
    help="Instance identifier (default: auto-generated tld-{random})",
)
def run(
    source, width, height, config_path, host, port, api_prefix, jpeg_quality, frame_interval,
    no_frame_retry_interval, marker_center, marker_radius, annotate_regions, drain_timeout,
    enable_mqtt, mqtt_host, mqtt_port, mqtt_username, mqtt_password, state_topic, json_logs, instance_id,
):
    """Run the detector and the MJPEG stream server"""
    from cupertino_tld.detector import ConfigValidationError, DetectorConfig, TrafficLightProcessor

    # Reconfigure logging based on --json-logs flag
    if json_logs:
        setup_structured_logging(level=LOG_LEVEL, json_format=True, output_file=LOG_FILE)

    # Build config kwargs (omit instance_id if None to allow default_factory to work)
    config_kwargs = {
        "source": source,
        "frame_width": width,
        "frame_height": height,
        "config_path": config_path or None,
        "host": host,
        "port": port,
        "api_prefix": api_prefix,
        "jpeg_quality": jpeg_quality,
        "frame_interval": frame_interval,
        "no_frame_retry_interval": no_frame_retry_interval,
        "marker_center": _parse_point(marker_center),
        "marker_radius": marker_radius,
        "annotate_regions": annotate_regions,
        "drain_timeout": drain_timeout,
        "enable_state_publishing": enable_mqtt,
        "mqtt_host": mqtt_host,
        "mqtt_port": mqtt_port,
        "mqtt_username": mqtt_username,
        "mqtt_password": mqtt_password,
        "state_topic": state_topic,
    }
    if instance_id is not None:
        config_kwargs["instance_id"] = instance_id

    try:
        config = DetectorConfig(**config_kwargs)
    except ConfigValidationError as e:
        raise click.BadParameter(str(e))

    click.echo("\n" + "=" * 70)
    click.echo("🚦 Traffic Light Detector")
    click.echo("=" * 70)
    click.echo(f"🆔 Instance ID: {config.instance_id}")
    click.echo(f"🎥 Source:      {config.source}")
    click.echo(f"📺 Stream:      http://{config.host}:{config.port}{config.stream_path}")
    click.echo(f"⚙️  Config:      {config.config_path or '(in memory)'}")
    if config.enable_state_publishing:
        click.echo(f"📡 State topic: {config.state_topic}/{config.instance_id}")
    click.echo("\n⌨️  Press Ctrl+C to exit")
    click.echo("=" * 70 + "\n")

    proc = TrafficLightProcessor(config)
    sys.exit(proc.run())


@main.command()
@click.argument("image", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--config-path",
    envvar="TLD_CONFIG_PATH",
    default="/usr/local/packages/tld/html/config.json",
    help="Lamp configuration document (env: TLD_CONFIG_PATH)",
)
@click.option("--output", "-o", type=click.Path(dir_okay=False), default=None, help="Write the annotated image here")
def classify(image, config_path, output):
    """Classify a single image file and print the result as JSON"""
    import cv2

    from cupertino_tld.detector import ConfigStore, FrameClassifier

    frame = cv2.imread(image, cv2.IMREAD_COLOR)
    if frame is None:
        raise click.ClickException(f"Unable to decode image: {image}")

    store = ConfigStore.from_file(config_path) if config_path else ConfigStore()
    result, annotated = FrameClassifier().classify(frame, store.snapshot())

    if output:
        if not cv2.imwrite(output, annotated):
            raise click.ClickException(f"Unable to write annotated image: {output}")

    click.echo(
        json.dumps(
            {
                "state": result.label.value,
                "brightness": [round(value, 2) for value in result.brightness],
                "threshold": result.threshold,
                "in_bounds": result.in_bounds,
            }
        )
    )


@main.command("show-config")
@click.option(
    "--config-path",
    envvar="TLD_CONFIG_PATH",
    default="/usr/local/packages/tld/html/config.json",
    help="Lamp configuration document (env: TLD_CONFIG_PATH)",
)
def show_config(config_path):
    """Print the effective lamp configuration document"""
    from cupertino_tld.detector import ConfigStore

    store = ConfigStore.from_file(config_path) if config_path else ConfigStore()
    click.echo(json.dumps(store.snapshot().to_document(), indent=2))


if __name__ == "__main__":
    main()
