# ---- Configuration ----
SCALE = 10
CPU_HZ = 500
TIMER_HZ = 60

BEEP_FREQUENCY = 440
BEEP_DURATION = 0.2
BEEP_PITCH_VARIATION = 15
BEEP_SAMPLE_RATE = 44100

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
