# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import json
import logging
import shlex
from datetime import datetime
from datetime import timezone
from pathlib import Path
from typing import Any
from typing import Mapping
from typing import Optional
from typing import Sequence
from typing import Tuple

from debian_setup._core import Command
from debian_setup._core import CompositeCommand
from debian_setup._core import Run
from debian_setup._core import RunAllowingFailure
from debian_setup._core import Write
from debian_setup._ssh import ssh
from debian_setup._ssh import ssh_still
from debian_setup._templates import render
from debian_setup.kernel._settings import Settings

kernel_git = 'https://git.kernel.org/pub/scm/linux/kernel/git/stable/linux.git'
build_timeout = 8 * 3600

build_dependencies = [
    'build-essential', 'fakeroot', 'devscripts', 'debhelper', 'quilt',
    'clang', 'lld', 'llvm', 'make', 'gcc', 'bc', 'bison', 'flex', 'libssl-dev', 'libelf-dev',
    'dwarves', 'pahole', 'libncurses-dev', 'libncurses5-dev', 'ccache', 'rsync',
    'git', 'ca-certificates', 'curl', 'zstd', 'python3', 'kmod', 'dkms',
    'autoconf', 'automake', 'libtool', 'gawk',
    'libblkid-dev', 'uuid-dev', 'zlib1g-dev', 'libzstd-dev', 'libudev-dev',
    ]

# Answers to the prompts olddefconfig would otherwise leave to defaults.
enabled_symbols = [
    'EXPERT', 'EMBEDDED',
    'JUMP_LABEL', 'SECCOMP', 'SECCOMP_FILTER',
    'LTO_CLANG', 'LTO_CLANG_THIN',
    'RANDOMIZE_KSTACK_OFFSET',
    'CC_OPTIMIZE_FOR_PERFORMANCE',
    ]
disabled_symbols = [
    'LTO_CLANG_FULL', 'LTO_NONE',
    'COMPAT_32BIT_TIME',
    'RANDOMIZE_KSTACK_OFFSET_DEFAULT',
    'CC_OPTIMIZE_FOR_SIZE',
    ]

llvm_env = {
    'LLVM': '1',
    'LLVM_IAS': '1',
    'CC': 'clang',
    'HOSTCC': 'clang',
    'LD': 'ld.lld',
    'AR': 'llvm-ar',
    'NM': 'llvm-nm',
    'OBJCOPY': 'llvm-objcopy',
    'OBJDUMP': 'llvm-objdump',
    'STRIP': 'llvm-strip',
    }

verify_checks = [
    ("Kernel", 'uname -r'),
    ("NUMA", 'numactl --hardware 2>/dev/null || true'),
    ("Mitigations", "sudo dmesg | grep -Ei 'pti|spectre|mds|retbleed|smep|smap' | tail -n 10"),
    ("IOMMU", "sudo dmesg | grep -Ei 'DMAR|IOMMU|VT-d' | tail -n 10"),
    ("PCIe AER", "sudo dmesg | grep -Ei 'AER:|pcieport' | tail -n 10"),
    ("Storage", 'lsblk -d -o NAME,ROTA,SIZE,MODEL,TRAN'),
    ("NIC drivers", (
        'for i in $(ls /sys/class/net | grep -vx lo); do '
        'ethtool -i "$i" 2>/dev/null | sed "s/^/[$i] /"; done')),
    ("Bonding", (
        'for b in /proc/net/bonding/*; do '
        '[ -f "$b" ] && echo "=== $(basename "$b") ===" && cat "$b"; done; true')),
    ("USB basics", "lsmod | grep -E 'usb_storage|usbhid' || echo '(usb_storage/usbhid not loaded)'"),
    ("Framebuffer", "sudo dmesg | grep -Ei 'mgag200|simplefb|framebuffer' | tail -n 10"),
    ("EDAC/MCE", "sudo dmesg | grep -Ei 'edac|mce' | tail -n 10"),
    ("MGLRU", "cat /sys/kernel/mm/lru_gen/enabled 2>/dev/null || echo '(no lru_gen sysfs)'"),
    ("eBPF posture", (
        "sysctl kernel.unprivileged_bpf_disabled 2>/dev/null || "
        "echo '(sysctl not present; unprivileged BPF is off in Kconfig)'")),
    ("ZFS", "modinfo zfs 2>/dev/null | head -n 3 | grep . || echo '(zfs module not installed)'"),
    ]


def as_root_in(directory: str, command: str) -> str:
    """Run a shell snippet as root in a directory on the build host.

    >>> print(as_root_in('/root/kernel-build/linux', 'make -j$(nproc) bindeb-pkg'))
    sudo sh -c 'cd /root/kernel-build/linux && make -j$(nproc) bindeb-pkg'
    """
    return f'sudo sh -c {shlex.quote(f"cd {shlex.quote(directory)} && {command}")}'


def pin_arguments() -> str:
    """Arguments of scripts/config.

    >>> pin_arguments().split(' --disable ')[1:3]
    ['LTO_CLANG_FULL', 'LTO_NONE']
    """
    return ' '.join([
        *[f'--enable {symbol}' for symbol in enabled_symbols],
        *[f'--disable {symbol}' for symbol in disabled_symbols],
        ])


def build_command(settings: Settings, localversion: str) -> str:
    """Make Debian packages for amd64 with Clang, LLD and ThinLTO.

    >>> s = Settings({'BUILDJOBS': '4', 'EXTRA_KCFLAGS': '-mllvm -inline-threshold=600'})
    >>> print(build_command(s, '-r720srv-pt'))  # doctest: +NORMALIZE_WHITESPACE
    LLVM=1 LLVM_IAS=1 CC=clang HOSTCC=clang LD=ld.lld AR=llvm-ar NM=llvm-nm OBJCOPY=llvm-objcopy
    OBJDUMP=llvm-objdump STRIP=llvm-strip KCFLAGS='-mllvm -inline-threshold=600'
    make -j4 bindeb-pkg LOCALVERSION=-r720srv-pt DBUILD_VERBOSE=1
    ARCH=x86_64 DEB_BUILD_ARCH=amd64 DEB_BUILD_OPTIONS=parallel=4
    """
    env = dict(llvm_env)
    if settings.extra_kcflags:
        env['KCFLAGS'] = settings.extra_kcflags
    assignments = ' '.join(f'{name}={shlex.quote(value)}' for name, value in env.items())
    jobs = settings.jobs
    return (
        f'{assignments} make -j{jobs} bindeb-pkg '
        f'LOCALVERSION={shlex.quote(localversion)} DBUILD_VERBOSE=1 '
        f'ARCH=x86_64 DEB_BUILD_ARCH=amd64 DEB_BUILD_OPTIONS=parallel={jobs}')


def build_meta(
        *,
        timestamp: datetime,
        kernel_commit: str,
        config_sha256: str,
        localversion: str,
        clang: str,
        lld: str,
        ) -> Mapping[str, Any]:
    """Provenance of a build.

    >>> meta = build_meta(
    ...     timestamp=datetime(2024, 10, 1, 8, 30, tzinfo=timezone.utc), kernel_commit='unknown',
    ...     config_sha256='ab12', localversion='-r720srv', clang='clang 16', lld='LLD 16')
    >>> meta['timestamp'], meta['arch']
    ('2024-10-01T08:30:00Z', 'amd64')
    """
    return {
        'timestamp': timestamp.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ'),
        'kernel_commit': kernel_commit,
        'config_sha256': config_sha256,
        'localversion': localversion,
        'arch': 'amd64',
        'clang': clang,
        'lld': lld,
        }


def installed_kernel(dpkg_list: str, localver: str) -> Optional[str]:
    """Version of the last installed image built with the local version.

    >>> installed_kernel('''\\
    ... ii  linux-image-6.1.0-25-amd64    6.1.106-3  amd64  Linux 6.1 for 64-bit PCs
    ... ii  linux-image-6.6.52-r720srv    6.6.52-1   amd64  Linux kernel, version 6.6.52-r720srv
    ... ii  linux-image-6.6.52-r720srv-dbg 6.6.52-1  amd64  Linux kernel debugging symbols
    ... rc  linux-image-6.6.58-r720srv    6.6.58-1   amd64  Linux kernel, version 6.6.58-r720srv
    ... ''', '-r720srv')
    '6.6.52-r720srv'
    """
    found = None
    for line in dpkg_list.splitlines():
        fields = line.split()
        if len(fields) < 2 or fields[0] != 'ii' or not fields[1].startswith('linux-image-'):
            continue
        version = fields[1][len('linux-image-'):]
        if version.endswith(localver):
            found = version
    return found


def zfs_package_name(kver: str, localver: str) -> str:
    """Name of the prebuilt modules package.

    >>> zfs_package_name('6.6.52-r720srv', '-r720srv')
    'zfs-modules-6.6.52-r720srv-r720srv'
    """
    suffix = localver[1:] if localver.startswith('-') else localver
    return f'zfs-modules-{kver}-{suffix}'


def render_zfs_control(*, package: str, version: str, arch: str, kver: str, localver: str) -> str:
    return render(
        _zfs_control_template,
        package=package, version=version, arch=arch, kver=kver, localver=localver)


def format_report(results: Sequence[Tuple[str, str]]) -> str:
    """Titles with indented output.

    >>> print(format_report([('Kernel', '6.6.52-r720srv\\n'), ('Bonding', '')]), end='')
    Kernel:
      6.6.52-r720srv
    Bonding:
      (nothing)
    """
    lines = []
    for title, output in results:
        lines.append(f'{title}:')
        body = output.rstrip('\n').splitlines() or ['(nothing)']
        lines.extend('  ' + line for line in body)
    return '\n'.join(lines) + '\n'


class RequireFile(Command):

    def __init__(self, path: str, hint: str):
        self._path = path
        self._hint = hint

    def __repr__(self):
        return f'{RequireFile.__name__}({self._path!r})'

    def run(self, host):
        if ssh_still(host, f'sudo test -e {shlex.quote(self._path)}').returncode != 0:
            raise PreconditionFailed(f"{host}: {self._path} does not exist. {self._hint}")


class InstallBuildDependencies(CompositeCommand):

    def __init__(self):
        super().__init__([
            Run('sudo apt-get update -y'),
            Run(
                'sudo DEBIAN_FRONTEND=noninteractive apt-get install -y --no-install-recommends ' +
                shlex.join(build_dependencies),
                timeout=3600),
            ])


class FetchKernel(CompositeCommand):
    """Shallow clone or sync linux-stable at the series tag. Record the commit."""

    def __init__(self, settings: Settings, series: str):
        tag = shlex.quote('v' + series)
        super().__init__([
            Run(f'sudo mkdir -p {shlex.quote(settings.workdir)}'),
            Run(
                as_root_in(settings.workdir, f'test -d linux || git clone --depth=1 --branch {tag} {kernel_git} linux'),
                timeout=3600),
            Run(
                as_root_in(settings.tree, f'git fetch --depth=1 origin tag {tag} && git checkout -f {tag}'),
                timeout=3600),
            Run(as_root_in(settings.tree, 'git reset --hard && git clean -fdx')),
            Run(as_root_in(settings.tree, 'git rev-parse HEAD > ../kernel.commit')),
            ])
        self._repr = f'{FetchKernel.__name__}({series!r})'

    def __repr__(self):
        return self._repr


class ConfigureKernel(CompositeCommand):
    """Pristine config: allnoconfig, the fragment, pins and snapshots."""

    def __init__(self, settings: Settings, fragment: str):
        tree = settings.tree
        fragment_path = settings.workdir + '/KCONFIG.fragment'
        super().__init__([
            RequireFile(tree, "Run fetch first"),
            Write(fragment, fragment_path),
            Run(as_root_in(tree, 'make mrproper')),
            Run(as_root_in(tree, 'make allnoconfig')),
            Run(as_root_in(tree, f'scripts/kconfig/merge_config.sh -m .config {shlex.quote(fragment_path)}')),
            Run(as_root_in(tree, 'scripts/config ' + pin_arguments())),
            # Twice: the first pass may expose symbols that depend on new answers.
            Run(as_root_in(tree, 'yes "" | make olddefconfig')),
            Run(as_root_in(tree, 'yes "" | make olddefconfig')),
            RunAllowingFailure(as_root_in(tree, 'yes "" | make listnewconfig'), "listnewconfig"),
            Run(as_root_in(tree, 'cp -f .config ../config.final')),
            RunAllowingFailure(
                as_root_in(tree, 'make savedefconfig > /dev/null 2>&1 && cp -f defconfig ../config.savedefconfig'),
                "savedefconfig snapshot"),
            Run(as_root_in(settings.workdir, "sha256sum config.final | cut -d ' ' -f 1 > config.sha256")),
            ])


class ListArtifacts(Command):

    def __init__(self, workdir: str, localversion: str):
        self._workdir = workdir
        self._localversion = localversion

    def __repr__(self):
        return f'{ListArtifacts.__name__}({self._localversion!r})'

    def run(self, host):
        v = shlex.quote(self._localversion)
        r = ssh_still(host, as_root_in(self._workdir, f'ls -1 linux-image-*{v}_*.deb linux-headers-*{v}_*.deb'))
        if r.returncode != 0:
            raise ArtifactNotFound(f"{host}: no packages for {self._localversion} in {self._workdir}")
        for name in r.stdout.decode().split():
            _logger.info("%s: artifact: %s/%s", host, self._workdir, name)


class WriteBuildMeta(Command):

    def __init__(self, settings: Settings):
        self._settings = settings

    def __repr__(self):
        return f'{WriteBuildMeta.__name__}({self._settings.workdir + "/build-meta.json"!r})'

    def run(self, host):
        workdir = self._settings.workdir
        meta = build_meta(
            timestamp=datetime.now(timezone.utc),
            kernel_commit=_first_line(host, f'sudo cat {shlex.quote(workdir + "/kernel.commit")}'),
            config_sha256=_first_line(host, f'sudo cat {shlex.quote(workdir + "/config.sha256")}'),
            localversion=self._settings.localver,
            clang=_first_line(host, 'clang --version'),
            lld=_first_line(host, 'ld.lld --version'),
            )
        Write(json.dumps(meta, indent=2) + '\n', workdir + '/build-meta.json').run(host)
        _logger.info("%s: wrote %s/build-meta.json", host, workdir)


class BuildKernel(CompositeCommand):

    def __init__(self, settings: Settings):
        tree = settings.tree
        super().__init__([
            RequireFile(tree, "Run fetch first"),
            Run(as_root_in(tree, 'if [ -f ../config.final ]; then cp -f ../config.final .config; fi')),
            Run(as_root_in(tree, build_command(settings, settings.localver)), timeout=build_timeout),
            ListArtifacts(settings.workdir, settings.localver),
            WriteBuildMeta(settings),
            ])


class InstallKernel(Command):
    """Install the newest image and, if built, headers. Then update GRUB."""

    def __init__(self, settings: Settings):
        self._workdir = settings.workdir
        self._localver = settings.localver

    def __repr__(self):
        return f'{InstallKernel.__name__}({self._localver!r})'

    def run(self, host):
        image = self._newest(host, 'linux-image')
        if image is None:
            raise ArtifactNotFound(f"{host}: no linux-image package for {self._localver} in {self._workdir}")
        packages = [image]
        headers = self._newest(host, 'linux-headers')
        if headers is not None:
            packages.append(headers)
        _logger.info("%s: installing %s", host, ' '.join(Path(p).name for p in packages))
        ssh(host, 'sudo dpkg -i ' + shlex.join(packages), timeout=3600)
        RunAllowingFailure('sudo update-grub', "update-grub").run(host)
        _logger.info("%s: installed, reboot when ready", host)

    def _newest(self, host, kind) -> Optional[str]:
        v = shlex.quote(self._localver)
        r = ssh_still(host, as_root_in(self._workdir, f'ls -1 {kind}-*{v}_*.deb 2>/dev/null | tail -n 1'))
        name = r.stdout.decode().strip()
        return f'{self._workdir}/{name}' if name else None


class Verify(Command):
    """Read-only report on the running kernel, drivers and hardening."""

    def __repr__(self):
        return f'{Verify.__name__}()'

    def run(self, host):
        results = []
        for title, command in verify_checks:
            r = ssh_still(host, command)
            results.append((title, r.stdout.decode(errors='replace')))
        print(format_report(results), end='', flush=True)


class InstallZfsDkms(CompositeCommand):

    def __init__(self):
        super().__init__([
            Run('sudo apt-get update -y'),
            Run(
                'sudo DEBIAN_FRONTEND=noninteractive apt-get install -y zfs-dkms zfsutils-linux zfs-initramfs',
                timeout=3600),
            Run('sudo update-initramfs -u -k "$(uname -r)"'),
            ])


class PackageZfs(Command):
    """Build OpenZFS kernel modules and stage them in a .deb. No DKMS."""

    def __init__(self, settings: Settings, zfs_version: str):
        self._settings = settings
        self._version = zfs_version

    def __repr__(self):
        return f'{PackageZfs.__name__}({self._version!r})'

    def run(self, host):
        s = self._settings
        kver = installed_kernel(ssh_still(host, "dpkg -l 'linux-image-*'").stdout.decode(), s.localver)
        if kver is None:
            kver = ssh(host, 'uname -r').stdout.decode().strip()
            _logger.info("%s: no installed image with %s, use the running kernel %s", host, s.localver, kver)
        else:
            _logger.info("%s: target kernel for ZFS modules: %s", host, kver)
        tag = shlex.quote('zfs-' + self._version)
        source = s.zfs_workdir + '/zfs'
        kernel_build = shlex.quote(f'/lib/modules/{kver}/build')
        package = zfs_package_name(kver, s.localver)
        package_dir = f'{s.zfs_workdir}/{package}'
        modules_dir = shlex.quote(f'{package_dir}/lib/modules/{kver}/extra/zfs')
        steps = [
            Run(f'sudo mkdir -p {shlex.quote(s.zfs_workdir)}'),
            Run(
                as_root_in(s.zfs_workdir, (
                    f'if [ -d zfs ]; then '
                    f'cd zfs && git fetch --depth=1 origin tag {tag} && git checkout -f {tag} '
                    f'&& git reset --hard && git clean -fdx; '
                    f'else git clone --depth=1 --branch {tag} {shlex.quote(s.zfs_src)} zfs; fi')),
                timeout=3600),
            Run(as_root_in(source, 'sh autogen.sh')),
            Run(as_root_in(source, (
                f'./configure --with-config=kernel '
                f'--with-linux={kernel_build} --with-linux-obj={kernel_build}'))),
            Run(as_root_in(source, f'make -j{s.jobs}'), timeout=build_timeout),
            Run(f'sudo rm -rf {shlex.quote(package_dir)}'),
            Run(as_root_in(source, (
                f'mkdir -p {modules_dir} && '
                f'find module -maxdepth 1 -name "*.ko" -exec install -m 0644 {{}} {modules_dir}/ \\;'))),
            ]
        for step in steps:
            step.run(host)
        arch = ssh(host, 'dpkg --print-architecture').stdout.decode().strip()
        control = render_zfs_control(package=package, version=self._version, arch=arch, kver=kver, localver=s.localver)
        Write(control, package_dir + '/DEBIAN/control').run(host)
        for script in ('postinst', 'postrm'):
            content = _maintainer_scripts_dir.joinpath('zfs-modules.' + script).read_bytes()
            Write(content, f'{package_dir}/DEBIAN/{script}', mode='u=rwx,go=rx').run(host)
        ssh(host, f'sudo dpkg-deb --build {shlex.quote(package_dir)} > /dev/null')
        _logger.info("%s: built %s.deb", host, package_dir)
        _logger.info("Install with: sudo dpkg -i %s.deb", package_dir)
        _logger.info("Userspace without DKMS: sudo apt-get install -y zfsutils-linux")
        _logger.info("Unsigned modules may not load under Secure Boot. Sign them with a MOK or disable Secure Boot.")


class BuildVariant(CompositeCommand):
    """Same config with IOMMU passthrough by default. Suffix -pt."""

    def __init__(self, settings: Settings):
        tree = settings.tree
        localversion = settings.localver + '-pt'
        super().__init__([
            RequireFile(settings.workdir + '/config.final', "Run config first"),
            Run(as_root_in(tree, 'cp -f ../config.final .config')),
            Run(as_root_in(tree, 'scripts/config --disable IOMMU_DEFAULT_DMA_STRICT --enable IOMMU_DEFAULT_PASSTHROUGH')),
            Run(as_root_in(tree, 'yes "" | make olddefconfig')),
            Run(as_root_in(tree, build_command(settings, localversion)), timeout=build_timeout),
            ListArtifacts(settings.workdir, localversion),
            ])


class ApplyPatches(Command):
    """Cherry-pick commits onto the tree and build with -p<short sha>."""

    def __init__(self, settings: Settings, commits: Sequence[str]):
        if not commits:
            raise ValueError("At least one commit is required")
        self._settings = settings
        self._commits = list(commits)

    def __repr__(self):
        return f'{ApplyPatches.__name__}({self._commits!r})'

    def run(self, host):
        s = self._settings
        RequireFile(s.tree, "Run fetch first").run(host)
        _logger.info("%s: cherry-picking %s", host, ' '.join(self._commits))
        r = ssh_still(host, as_root_in(s.tree, 'git cherry-pick -x ' + shlex.join(self._commits)))
        if r.returncode != 0:
            _logger.error("%s: %s", host, r.stderr.decode(errors='replace').strip())
            _logger.error("Resolve conflicts in %s or abort: git cherry-pick --abort", s.tree)
            raise CherryPickFailed(f"{host}: cherry-pick of {' '.join(self._commits)} failed")
        short = ssh(host, as_root_in(s.tree, 'git rev-parse --short HEAD')).stdout.decode().strip()
        localversion = f'{s.localver}-p{short}'
        Run(as_root_in(s.tree, build_command(s, localversion)), timeout=build_timeout).run(host)
        ListArtifacts(s.workdir, localversion).run(host)
        _logger.info("%s: patched build complete: %s", host, localversion)


class CleanTree(Run):

    def __init__(self, settings: Settings):
        super().__init__(f'sudo rm -rf {shlex.quote(settings.tree)}')


def _first_line(host, command) -> str:
    r = ssh_still(host, command)
    if r.returncode != 0:
        return 'unknown'
    lines = r.stdout.decode(errors='replace').splitlines()
    return lines[0].strip() if lines else 'unknown'


class PreconditionFailed(Exception):
    pass


class ArtifactNotFound(Exception):
    pass


class CherryPickFailed(Exception):
    pass


_maintainer_scripts_dir = Path(__file__).parent
_zfs_control_template = Path(__file__).with_name('zfs-modules.control.j2')
_logger = logging.getLogger(__name__)
