# pyglet host for the machine: it paces execution, feeds the keyboard snapshot,
# renders the committed frame and plays the buzzer. The machine itself knows none of this.

import logging
import random

import pyglet
from pyglet.media import synthesis
from pyglet.window import key

from chip8vm import config
from chip8vm.display import lit_pixels
from chip8vm.machine import DISPLAY_HEIGHT, DISPLAY_WIDTH, VMFault

logger = logging.getLogger(__name__)

# Key mapping - maps physical keyboard keys to CHIP-8 keypad
KEYMAP = {
    key._1: 0x1, key._2: 0x2, key._3: 0x3, key._4: 0xC,
    key.Q: 0x4, key.W: 0x5, key.E: 0x6, key.R: 0xD,
    key.A: 0x7, key.S: 0x8, key.D: 0x9, key.F: 0xE,
    key.Z: 0xA, key.X: 0x0, key.C: 0xB, key.V: 0xF,
}


def toggle_tracing():
    """Flip the machine's per-instruction DEBUG tracing on or off."""
    machine_logger = logging.getLogger("chip8vm.machine")
    tracing = machine_logger.getEffectiveLevel() > logging.DEBUG
    machine_logger.setLevel(logging.DEBUG if tracing else logging.INFO)
    return tracing


class Chip8Window(pyglet.window.Window):

    def __init__(self, machine, scale=config.SCALE, cpu_hz=config.CPU_HZ):
        super().__init__(DISPLAY_WIDTH * scale, DISPLAY_HEIGHT * scale,
                         caption="CHIP-8 Emulator", resizable=False)
        self.machine = machine
        self.scale = scale
        self.frame = machine.draw()
        self.has_exit = False
        self.sound_playing = False

        # Pre-create a pixel sprite for drawing
        self.pixel = pyglet.image.SolidColorImagePattern((255, 255, 255, 255)).create_image(scale, scale)

        # Schedule CPU and timer ticks
        pyglet.clock.schedule_interval(self._cpu_tick, 1.0 / cpu_hz)
        pyglet.clock.schedule_interval(self._timer_tick, 1.0 / config.TIMER_HZ)

    def _play_beep(self):
        freq = config.BEEP_FREQUENCY + random.randint(-config.BEEP_PITCH_VARIATION,
                                                      config.BEEP_PITCH_VARIATION)
        wave = synthesis.Sine(duration=config.BEEP_DURATION, frequency=freq,
                              sample_rate=config.BEEP_SAMPLE_RATE)

        player = pyglet.media.Player()
        player.queue(wave)
        player.play()
        self.sound_playing = True

        def on_eos():
            self.sound_playing = False
            player.delete()

        player.on_eos = on_eos

    # ---- Input ----
    def on_key_press(self, symbol, modifiers):
        if symbol == key.ESCAPE:
            self.close()
        elif symbol == key.F1:
            logger.info("Tracing %s", "on" if toggle_tracing() else "off")
        elif symbol in KEYMAP:
            self.machine.press(KEYMAP[symbol])

    def on_key_release(self, symbol, modifiers):
        if symbol in KEYMAP:
            self.machine.release(KEYMAP[symbol])

    # ---- Drawing ----
    def on_draw(self):
        if self.machine.needs_redraw():
            self.frame = self.machine.draw()

        self.clear()
        top = (DISPLAY_HEIGHT - 1) * self.scale
        for x, y in lit_pixels(self.frame):
            self.pixel.blit(x * self.scale, top - y * self.scale)

    # ---- CPU cycle ----
    def _cpu_tick(self, dt):
        if self.has_exit:
            return
        try:
            self.machine.step(1)
        except VMFault as e:
            logger.error("Emulation stopped: %s", e)
            self.has_exit = True
            self.close()

    # ---- timers ----
    def _timer_tick(self, dt):
        self.machine.tick()
        if self.machine.sound_playing and not self.sound_playing:
            self._play_beep()

    def on_close(self):
        pyglet.clock.unschedule(self._cpu_tick)
        pyglet.clock.unschedule(self._timer_tick)
        super().on_close()


def run(machine, scale=config.SCALE, cpu_hz=config.CPU_HZ):
    Chip8Window(machine, scale=scale, cpu_hz=cpu_hz)
    pyglet.app.run()
