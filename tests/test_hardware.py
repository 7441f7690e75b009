import asyncio
import threading

from rigsync.hardware import (
    Cpu,
    DeviceCounters,
    Gpu,
    PowerSampler,
    discover_gpus,
    read_power_draw,
)


def test_counters_average_and_reset():
    counters = DeviceCounters()
    counters.add_hash_rate(100)
    counters.add_hash_rate(300)
    counters.add_power_draw(150)

    assert counters.average_hash_rate() == 200
    assert counters.average_power_draw() == 150

    counters.reset_counters()

    assert counters.average_hash_rate() == 0
    assert counters.average_power_draw() == 0


def test_drain_under_concurrent_writers_counts_each_sample_once():
    counters = DeviceCounters()
    drained = []

    def writer():
        for _ in range(2000):
            counters.add_hash_rate(1)

    threads = [threading.Thread(target=writer) for _ in range(4)]
    for thread in threads:
        thread.start()
    for _ in range(50):
        drained.append(counters.drain())
    for thread in threads:
        thread.join()
    drained.append(counters.drain())

    # every sample is 1, so each non-empty window averages exactly 1
    assert all(rate in (0, 1) for rate, _ in drained)
    assert counters.drain() == (0.0, 0.0)


class FakeNvml:
    """Minimal NVML stand-in: one entry per board, power in milliwatts or None."""

    class NVMLError(Exception):
        pass

    def __init__(self, boards=(), init_error=False):
        self.boards = list(boards)
        self.init_error = init_error
        self.inits = 0
        self.shutdowns = 0

    def nvmlInit(self):
        if self.init_error:
            raise self.NVMLError("NVML Shared Library Not Found")
        self.inits += 1

    def nvmlShutdown(self):
        self.shutdowns += 1

    def nvmlDeviceGetCount(self):
        return len(self.boards)

    def nvmlDeviceGetHandleByIndex(self, index):
        if index >= len(self.boards):
            raise self.NVMLError("Invalid Argument")
        return index

    def nvmlDeviceGetUUID(self, handle):
        return self.boards[handle][0]

    def nvmlDeviceGetName(self, handle):
        return self.boards[handle][1]

    def nvmlDeviceGetPowerUsage(self, handle):
        milliwatts = self.boards[handle][2]
        if milliwatts is None:
            raise self.NVMLError("Not Supported")
        return milliwatts


BOARDS = [
    ("GPU-aaaa", b"NVIDIA GeForce GTX 1080", 143520),
    ("GPU-bbbb", "NVIDIA GeForce RTX 3070", None),
]


def test_discover_gpus_through_nvml():
    nvml = FakeNvml(BOARDS)

    gpus = discover_gpus(nvml)

    assert [(g.index, g.uuid, g.model) for g in gpus] == [
        (0, "GPU-aaaa", "NVIDIA GeForce GTX 1080"),
        (1, "GPU-bbbb", "NVIDIA GeForce RTX 3070"),
    ]
    assert nvml.inits == nvml.shutdowns == 1


def test_discover_gpus_without_driver():
    assert discover_gpus(FakeNvml(init_error=True)) == []


def test_discover_gpus_on_device_error():
    class BrokenNvml(FakeNvml):
        def nvmlDeviceGetName(self, handle):
            raise self.NVMLError("GPU is lost")

    nvml = BrokenNvml(BOARDS)

    assert discover_gpus(nvml) == []
    assert nvml.shutdowns == 1


def test_read_power_draw_skips_unsupported_boards():
    nvml = FakeNvml(BOARDS)

    assert read_power_draw([0, 1, 5], nvml) == {0: 143.52}
    assert nvml.shutdowns == 1


def test_power_sampler_feeds_matching_gpus():
    gpus = [Gpu(0, "GPU-aaaa", "GTX 1080"), Gpu(1, "GPU-bbbb", "RTX 3070")]
    sampler = PowerSampler(gpus, 10, nvml=FakeNvml([("GPU-aaaa", "GTX 1080", 120000), ("GPU-bbbb", "RTX 3070", 180000)]))

    assert sampler.sample_once() == 2
    assert gpus[0].average_power_draw() == 120.0
    assert gpus[1].average_power_draw() == 180.0


def test_power_sampler_survives_missing_driver():
    gpus = [Gpu(0, "GPU-aaaa", "GTX 1080")]
    sampler = PowerSampler(gpus, 10, nvml=FakeNvml(init_error=True))

    async def scenario():
        task = asyncio.create_task(sampler.run())
        await asyncio.sleep(0.05)
        sampler.stop()
        await asyncio.wait_for(task, timeout=1)

    asyncio.run(scenario())

    assert gpus[0].average_power_draw() == 0



def test_cpu_summary():
    cpu = Cpu("AMD Ryzen 5 3600", 6, 12, 4200.0)

    assert cpu.human_readable() == "AMD Ryzen 5 3600 (6 cores / 12 threads @ 4.20 GHz)"
    assert Cpu("x86_64", 2, 4).human_readable() == "x86_64 (2 cores / 4 threads)"
