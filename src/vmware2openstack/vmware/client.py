"""VMware vSphere/vCenter client connection and VM lookup."""

from __future__ import annotations

import ssl
import time
from typing import Optional

from pyVim.connect import Disconnect, SmartConnect
from pyVmomi import vim

from vmware2openstack.exceptions import NotFoundError
from vmware2openstack.utils.logging import get_logger

logger = get_logger(__name__)


class VSphereClient:
    """Manages a connection to a VMware vSphere/vCenter instance.

    Uses pyvmomi to connect via the vSphere API, retrying the initial
    login with exponential backoff.
    """

    def __init__(self):
        self._si: Optional[vim.ServiceInstance] = None
        self._content: Optional[vim.ServiceInstanceContent] = None
        self._host: str = ""

    @property
    def content(self) -> vim.ServiceInstanceContent:
        if self._content is None:
            raise ConnectionError("Not connected to vCenter. Call connect() first.")
        return self._content

    def connect(
        self,
        host: str,
        username: str,
        password: str,
        port: int = 443,
        insecure: bool = False,
        max_retries: int = 3,
    ) -> vim.ServiceInstance:
        """Connect to vCenter/vSphere with retry logic.

        Raises:
            ConnectionError: If all connection attempts fail
        """
        self._host = host
        ssl_context = None
        if insecure:
            ssl_context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE

        last_error = None
        for attempt in range(1, max_retries + 1):
            try:
                logger.info(f"Connecting to vCenter {host} (attempt {attempt}/{max_retries})")
                self._si = SmartConnect(
                    host=host,
                    user=username,
                    pwd=password,
                    port=port,
                    sslContext=ssl_context,
                )
                self._content = self._si.RetrieveContent()
                logger.info(f"Connected to vCenter: {host} "
                            f"(API version: {self._content.about.apiVersion})")
                return self._si

            except Exception as e:
                last_error = e
                if attempt < max_retries:
                    delay = 2 ** attempt
                    logger.warning(f"Connection failed: {e}. Retrying in {delay}s...")
                    time.sleep(delay)
                else:
                    logger.error(f"All {max_retries} connection attempts failed")

        raise ConnectionError(f"Failed to connect to vCenter {host}: {last_error}")

    def disconnect(self):
        """Gracefully disconnect from vCenter."""
        if self._si:
            try:
                Disconnect(self._si)
                logger.info(f"Disconnected from vCenter: {self._host}")
            except Exception as e:
                logger.warning(f"Error during disconnect: {e}")
            finally:
                self._si = None
                self._content = None

    def list_vms(self) -> list[vim.VirtualMachine]:
        """All VirtualMachine managed objects visible to this session."""
        view = self.content.viewManager.CreateContainerView(
            self.content.rootFolder, [vim.VirtualMachine], True
        )
        try:
            return list(view.view)
        finally:
            view.Destroy()

    def find_vm(self, vm_name: str) -> vim.VirtualMachine:
        """Find exactly one VM by name across all datacenters."""
        matches = [vm for vm in self.list_vms() if vm.name == vm_name]
        if not matches:
            raise NotFoundError(f"VM '{vm_name}' not found in vCenter")
        if len(matches) > 1:
            refs = ", ".join(vm._moId for vm in matches)
            raise NotFoundError(f"VM name '{vm_name}' is not unique in vCenter ({refs})")
        return matches[0]

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.disconnect()
