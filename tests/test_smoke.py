import subprocess
import sys


def test_cli_help():
    proc = subprocess.run([sys.executable, "-m", "storesync", "--help"], capture_output=True, text=True)
    assert proc.returncode == 0
    assert "SureCart" in proc.stdout
    assert "sync-products" in proc.stdout


def test_imports():
    import storesync
    import storesync.api
    import storesync.main
    import storesync.models
    import storesync.config
    import storesync.products_sync
    import storesync.collections_sync
