import app as cli
from cafe_printer.core.config import save_config


def test_defaults():
    args = cli.parse_args([])
    assert (args.host, args.port, args.self_test) == ("0.0.0.0", 9999, True)
    assert args.ip is None


def test_ip_forces_network_transport(tmp_path):
    cfg_path = tmp_path / "cfg.json"
    save_config({"printer_type": "usb", "network_port": 9101}, path=str(cfg_path))
    args = cli.parse_args(["--config", str(cfg_path), "--ip", "192.168.0.40", "--no-self-test"])
    config = cli.build_config(args)
    assert config["printer_type"] == "network"
    assert config["network_ip"] == "192.168.0.40"
    assert config["network_port"] == 9101
    assert args.self_test is False


def test_config_file_selects_transport_without_ip(tmp_path):
    cfg_path = tmp_path / "cfg.json"
    save_config({"printer_type": "spooler"}, path=str(cfg_path))
    config = cli.build_config(cli.parse_args(["--config", str(cfg_path)]))
    assert config["printer_type"] == "spooler"
